"""Fee-Exact Publish Engine: quote, provision, build, broadcast, emit."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

from permadeploy_core.constants import DEFAULT_BATCH_SIZE
from permadeploy_core.errors import IntegrityError
from permadeploy_core.interfaces.transaction import Utxo
from permadeploy_core.publish.models import (
    BuiltJob,
    FeeQuote,
    PublishBatchResult,
    PublishJob,
    PublishResult,
)
from permadeploy_core.publish.strategy import PublishStrategy
from permadeploy_core.retry import RetryPolicy, retry_with_backoff

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

OnPublished = Callable[[PublishResult], None]


def batched(items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


class PublishEngine:
    """Publishes a set of jobs with exactly-sized carriers.

    One engine is used for a whole deployment so the ``spent`` set spans
    every batch. Change from each funding transaction is carried forward
    as the seed input of the next one.
    """

    def __init__(
        self,
        strategy: PublishStrategy,
        retry_policy: RetryPolicy,
        batch_size: int = DEFAULT_BATCH_SIZE,
        on_published: OnPublished | None = None,
        spent: set[str] | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.strategy = strategy
        self.retry_policy = retry_policy
        self.batch_size = batch_size
        self.on_published = on_published
        self.spent = spent if spent is not None else set()
        self.seed: Utxo | None = None

    @property
    def dry_run(self) -> bool:
        return self.strategy.dry_run

    async def _in_batches(
        self, items: Sequence[T], fn: Callable[[T], Awaitable[R]]
    ) -> list[R]:
        out: list[R] = []
        for batch in batched(items, self.batch_size):
            out.extend(await asyncio.gather(*(fn(item) for item in batch)))
        return out

    async def quote_all(self, jobs: Sequence[PublishJob]) -> list[FeeQuote]:
        return await self._in_batches(
            jobs,
            lambda job: retry_with_backoff(
                lambda: self.strategy.quote(job), self.retry_policy, f"quote {job.id}"
            ),
        )

    async def _build(self, quote: FeeQuote, carrier: Utxo) -> BuiltJob:
        tx = await self.strategy.build(quote, carrier)
        if tx.has_change:
            raise IntegrityError(f"Job {quote.job.id} transaction has a change output")
        paid = tx.input_total - tx.output_total
        if paid != quote.exact_fee:
            raise IntegrityError(
                f"Job {quote.job.id} pays {paid} sats in fees, quoted {quote.exact_fee}"
            )
        self.spent.add(carrier.outpoint)
        return BuiltJob(quote=quote, carrier=carrier, tx=tx)

    async def _broadcast(self, built: BuiltJob) -> PublishResult:
        # The same signed bytes are resubmitted on every attempt.
        txid = await retry_with_backoff(
            lambda: self.strategy.broadcast(built.tx),
            self.retry_policy,
            f"broadcast {built.job.id}",
        )
        if txid != built.tx.txid:
            logger.warning("Indexer returned txid %s for %s", txid, built.tx.txid)
        result = PublishResult(
            job=built.job,
            txid=txid,
            vout=built.tx.output_index(built.job.output_kind),
            content_hash=built.job.content_hash,
            fee=built.quote.exact_fee,
        )
        if self.on_published is not None:
            self.on_published(result)
        return result

    async def publish(self, jobs: Sequence[PublishJob]) -> PublishBatchResult:
        if not jobs:
            return PublishBatchResult()

        quotes = await self.quote_all(jobs)
        logger.info(
            "Quoted %d jobs, %d sats required",
            len(quotes),
            sum(q.required_sats for q in quotes),
        )

        provision = await self.strategy.provision(quotes, self.spent, self.seed)
        self.seed = provision.change
        if len(provision.carriers) != len(quotes):
            raise IntegrityError(
                f"Provisioned {len(provision.carriers)} carriers for {len(quotes)} jobs"
            )
        for carrier, quote in zip(provision.carriers, quotes):
            if carrier.satoshis != quote.required_sats:
                raise IntegrityError(
                    f"Carrier {carrier.outpoint} holds {carrier.satoshis} sats, "
                    f"job {quote.job.id} requires {quote.required_sats}"
                )

        built = [await self._build(q, c) for q, c in zip(quotes, provision.carriers)]
        results = await self._in_batches(built, self._broadcast)

        total_cost = provision.fee + sum(q.exact_fee for q in quotes)
        logger.info("Published %d jobs, cost %d sats", len(results), total_cost)
        return PublishBatchResult(
            results=results,
            funding_txid=provision.txid,
            total_cost=total_cost,
            change=provision.change,
        )
