"""Indexer interface: UTXO queries, broadcast, chain-tip lookup."""

from __future__ import annotations

import math
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from permadeploy_core.interfaces.transaction import Utxo


class FundingTarget(BaseModel):
    """Hint telling the indexer how much value the caller actually needs."""

    model_config = ConfigDict(frozen=True)

    unspent_value: int = Field(ge=0)
    estimate_size: int = Field(default=0, ge=0)
    sats_per_kb: int = Field(default=1, gt=0)
    additional: int = Field(default=0, ge=0)

    @property
    def required_sats(self) -> int:
        fee = math.ceil(self.estimate_size / 1000 * self.sats_per_kb)
        return self.unspent_value + fee + self.additional


class ChainTip(BaseModel):
    """Latest carrier in a spend-and-recreate chain plus its side-channel metadata."""

    model_config = ConfigDict(frozen=True)

    origin: str
    utxo: Utxo | None = None
    metadata: dict[str, str] | None = None


@runtime_checkable
class Indexer(Protocol):
    async def list_unspent(
        self, address: str, target: FundingTarget | None = None
    ) -> list[Utxo]: ...

    async def broadcast(self, raw_hex: str) -> str: ...

    async def fetch_latest_in_chain(
        self, origin: str, include_utxo: bool = True
    ) -> ChainTip: ...
