"""Publish strategy interface, selected once per deployment."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from permadeploy_core.interfaces.transaction import BuiltTransaction, Utxo
from permadeploy_core.publish.models import FeeQuote, Provision, PublishJob


@runtime_checkable
class PublishStrategy(Protocol):
    """The four network-facing steps of publishing.

    ``provision`` must skip (and then record) every outpoint in *spent* so
    no carrier is handed out twice within one deployment.
    """

    dry_run: bool

    @property
    def address(self) -> str: ...

    async def quote(self, job: PublishJob) -> FeeQuote: ...

    async def provision(
        self, quotes: list[FeeQuote], spent: set[str], seed: Utxo | None = None
    ) -> Provision: ...

    async def build(self, quote: FeeQuote, carrier: Utxo) -> BuiltTransaction: ...

    async def broadcast(self, tx: BuiltTransaction) -> str: ...
