"""Live publish strategy backed by a Transaction Builder and an Indexer."""

from __future__ import annotations

import logging
import math

from permadeploy_core.constants import (
    PLACEHOLDER_INPUT_SATS,
    TX_BASE_SIZE,
    TX_INPUT_SIZE,
    TX_OUTPUT_SIZE,
    UTXO_FETCH_BUFFER_SATS,
)
from permadeploy_core.errors import DeployError, InsufficientFundsError, SpentCarrierError
from permadeploy_core.interfaces.indexer import FundingTarget, Indexer
from permadeploy_core.interfaces.transaction import BuiltTransaction, TransactionBuilder, TxOutput, Utxo
from permadeploy_core.publish.models import FeeQuote, Provision, PublishJob
from permadeploy_core.retry import RetryPolicy, is_spent_carrier_message, retry_with_backoff

logger = logging.getLogger(__name__)

PLACEHOLDER_TXID = "0" * 64


def _job_metadata(job: PublishJob) -> dict[str, str]:
    return {"path": job.path}


def estimate_fee(inputs: int, outputs: int, sats_per_kb: int, data_bytes: int = 0) -> int:
    size = TX_BASE_SIZE + TX_INPUT_SIZE * inputs + TX_OUTPUT_SIZE * outputs + data_bytes
    return math.ceil(size * sats_per_kb / 1000)


def select_inputs(
    candidates: list[Utxo], amount: int, n_outputs: int, sats_per_kb: int, address: str
) -> list[Utxo]:
    """Take candidates in order until they cover *amount* plus the estimated fee.

    Raises InsufficientFundsError naming *address* when they never do.
    """
    selected: list[Utxo] = []
    available = 0
    for utxo in candidates:
        selected.append(utxo)
        available += utxo.satoshis
        if available >= amount + estimate_fee(len(selected), n_outputs, sats_per_kb):
            return selected
    needed = amount + estimate_fee(max(len(selected), 1), n_outputs, sats_per_kb)
    raise InsufficientFundsError(address, needed, available)


class NetworkStrategy:
    """Quote, fund, sign and broadcast against the real network."""

    dry_run = False

    def __init__(
        self,
        builder: TransactionBuilder,
        indexer: Indexer,
        sats_per_kb: int,
        retry_policy: RetryPolicy,
    ) -> None:
        self._builder = builder
        self._indexer = indexer
        self._sats_per_kb = sats_per_kb
        self._retry_policy = retry_policy

    @property
    def address(self) -> str:
        return self._builder.address

    async def quote(self, job: PublishJob) -> FeeQuote:
        """Build the job against an oversized placeholder input and read the fee.

        The placeholder transaction carries the same outputs and metadata as
        the signed one plus a change output, so the measured fee already
        covers the final shape.
        """
        placeholder = Utxo(
            txid=PLACEHOLDER_TXID,
            vout=0,
            satoshis=PLACEHOLDER_INPUT_SATS,
            owner=self.address,
        )
        outputs = job.outputs()
        tx = await self._builder.build(
            [placeholder],
            outputs,
            change_address=self.address,
            sats_per_kb=self._sats_per_kb,
            metadata=_job_metadata(job),
        )
        required = tx.fee + sum(o.satoshis for o in outputs)
        logger.debug("Quoted %s: fee=%d required=%d", job.id, tx.fee, required)
        return FeeQuote(job=job, exact_fee=tx.fee, required_sats=required)

    async def provision(
        self, quotes: list[FeeQuote], spent: set[str], seed: Utxo | None = None
    ) -> Provision:
        """Create one exact carrier per quote in a single split transaction."""
        if not quotes:
            return Provision(carriers=(), txid=None, fee=0, change=seed)

        amounts = [q.required_sats for q in quotes]
        total = sum(amounts)
        funding = await self._select_funding(total, len(amounts), spent, seed)

        outputs = [
            TxOutput(kind="payment", satoshis=amount, address=self.address)
            for amount in amounts
        ]
        tx = await self._builder.build(
            funding,
            outputs,
            change_address=self.address,
            sats_per_kb=self._sats_per_kb,
        )
        for utxo in funding:
            spent.add(utxo.outpoint)

        txid = await retry_with_backoff(
            lambda: self.broadcast(tx), self._retry_policy, "funding broadcast"
        )

        carriers = []
        change = None
        for vout, output in enumerate(tx.outputs):
            utxo = Utxo(txid=txid, vout=vout, satoshis=output.satoshis, owner=self.address)
            if output.kind == "payment":
                carriers.append(utxo)
            elif output.kind == "change" and output.satoshis > 0:
                change = utxo
        if len(carriers) != len(quotes):
            raise DeployError(
                f"Funding transaction {txid} has {len(carriers)} carriers, expected {len(quotes)}"
            )

        logger.info(
            "Provisioned %d carriers (%d sats) in %s, fee %d",
            len(carriers),
            total,
            txid,
            tx.fee,
        )
        return Provision(carriers=tuple(carriers), txid=txid, fee=tx.fee, change=change)

    async def _select_funding(
        self, total: int, n_outputs: int, spent: set[str], seed: Utxo | None
    ) -> list[Utxo]:
        target = FundingTarget(
            unspent_value=total,
            estimate_size=TX_BASE_SIZE + TX_INPUT_SIZE + TX_OUTPUT_SIZE * (n_outputs + 1),
            sats_per_kb=self._sats_per_kb,
            additional=UTXO_FETCH_BUFFER_SATS,
        )

        seeds: list[Utxo] = []
        if seed is not None and seed.outpoint not in spent:
            seeds.append(seed)

        listing: list[Utxo] = []
        try:
            listing = await self._list_unspent(target)
        except InsufficientFundsError:
            if not seeds:
                raise
        candidates = self._merge(seeds, listing, spent)
        try:
            return select_inputs(candidates, total, n_outputs + 1, self._sats_per_kb, self.address)
        except InsufficientFundsError:
            if not any(u.outpoint in spent for u in listing):
                raise
        # The targeted selection held outpoints already spent in this run
        candidates = self._merge(seeds, await self._list_unspent(None), spent)
        return select_inputs(candidates, total, n_outputs + 1, self._sats_per_kb, self.address)

    async def _list_unspent(self, target: FundingTarget | None) -> list[Utxo]:
        return await retry_with_backoff(
            lambda: self._indexer.list_unspent(self.address, target),
            self._retry_policy,
            "UTXO listing",
        )

    @staticmethod
    def _merge(seeds: list[Utxo], listing: list[Utxo], spent: set[str]) -> list[Utxo]:
        """Seeds first, then the listing largest-first, skipping spent and duplicates."""
        merged = list(seeds)
        seen = {u.outpoint for u in seeds}
        for utxo in sorted(listing, key=lambda u: u.satoshis, reverse=True):
            if utxo.outpoint in spent or utxo.outpoint in seen:
                continue
            seen.add(utxo.outpoint)
            merged.append(utxo)
        return merged

    async def build(self, quote: FeeQuote, carrier: Utxo) -> BuiltTransaction:
        return await self._builder.build(
            [carrier],
            quote.job.outputs(),
            sats_per_kb=self._sats_per_kb,
            metadata=_job_metadata(quote.job),
        )

    async def broadcast(self, tx: BuiltTransaction) -> str:
        try:
            return await self._indexer.broadcast(tx.raw_hex)
        except DeployError:
            raise
        except Exception as e:
            if is_spent_carrier_message(str(e)):
                raise SpentCarrierError(f"Carrier for {tx.txid} already spent: {e}", e) from e
            raise
