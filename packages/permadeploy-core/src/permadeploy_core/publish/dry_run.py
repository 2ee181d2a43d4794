"""Dry-run publish strategy: deterministic, no network access."""

from __future__ import annotations

import hashlib
import logging

from permadeploy_core.interfaces.transaction import BuiltTransaction, TxOutput, Utxo
from permadeploy_core.publish.models import FeeQuote, Provision, PublishJob
from permadeploy_core.publish.network import estimate_fee

logger = logging.getLogger(__name__)

DRY_RUN_ADDRESS = "dry-run-address"


def _fake_txid(*parts: str) -> str:
    return hashlib.sha256("|".join(parts).encode()).hexdigest()


class DryRunStrategy:
    """Simulates every publish step with a size-based fee estimate.

    Transaction ids are hashes of the inputs and payload, so repeated dry
    runs over the same tree produce the same ids.
    """

    dry_run = True

    def __init__(self, sats_per_kb: int = 1, address: str = DRY_RUN_ADDRESS) -> None:
        self._sats_per_kb = sats_per_kb
        self._address = address
        self._provisions = 0
        self.broadcasts: list[str] = []

    @property
    def address(self) -> str:
        return self._address

    async def quote(self, job: PublishJob) -> FeeQuote:
        outputs = job.outputs()
        fee = estimate_fee(1, len(outputs), self._sats_per_kb, job.size)
        return FeeQuote(job=job, exact_fee=fee, required_sats=fee + sum(o.satoshis for o in outputs))

    async def provision(
        self, quotes: list[FeeQuote], spent: set[str], seed: Utxo | None = None
    ) -> Provision:
        if not quotes:
            return Provision(carriers=(), txid=None, fee=0, change=seed)
        self._provisions += 1
        txid = _fake_txid(
            "split",
            str(self._provisions),
            *(q.job.id for q in quotes),
        )
        carriers = tuple(
            Utxo(txid=txid, vout=i, satoshis=q.required_sats, owner=self._address)
            for i, q in enumerate(quotes)
        )
        fee = estimate_fee(1, len(quotes) + 1, self._sats_per_kb)
        logger.debug("[dry-run] provisioned %d carriers in %s", len(carriers), txid)
        return Provision(carriers=carriers, txid=txid, fee=fee)

    async def build(self, quote: FeeQuote, carrier: Utxo) -> BuiltTransaction:
        job = quote.job
        txid = _fake_txid(carrier.outpoint, job.id, job.content_hash)
        outputs: tuple[TxOutput, ...] = tuple(job.outputs())
        return BuiltTransaction(
            txid=txid,
            raw_hex=txid,
            fee=quote.exact_fee,
            inputs=(carrier,),
            outputs=outputs,
            metadata={"path": job.path},
        )

    async def broadcast(self, tx: BuiltTransaction) -> str:
        self.broadcasts.append(tx.txid)
        return tx.txid
