"""Data models for the publish pipeline."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from functools import cached_property
from typing import Literal

from permadeploy_core.constants import INSCRIPTION_OUTPUT_SATS, content_url_path, format_outpoint
from permadeploy_core.interfaces.transaction import BuiltTransaction, TxOutput, Utxo


@dataclass(frozen=True)
class PublishJob:
    """A whole file or one chunk of a file to be carried on-chain.

    Carrier-bearing jobs put their bytes in a 1-sat ordinal output that can
    later be spent; the rest use a zero-value data output.
    """

    id: str
    kind: Literal["whole", "chunk"]
    path: str
    content_type: str
    data: bytes = field(repr=False)
    destination: str
    chunk_index: int | None = None
    total_chunks: int | None = None
    carrier_bearing: bool = False

    def __post_init__(self) -> None:
        if self.kind == "chunk" and (self.chunk_index is None or self.total_chunks is None):
            raise ValueError(f"Chunk job {self.id} needs chunk_index and total_chunks")

    @cached_property
    def content_hash(self) -> str:
        return hashlib.sha256(self.data).hexdigest()

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def output_kind(self) -> str:
        return "inscription" if self.carrier_bearing else "data"

    def outputs(self) -> list[TxOutput]:
        if self.carrier_bearing:
            return [
                TxOutput(
                    kind="inscription",
                    satoshis=INSCRIPTION_OUTPUT_SATS,
                    address=self.destination,
                    data=self.data,
                    content_type=self.content_type,
                )
            ]
        return [TxOutput(kind="data", satoshis=0, data=self.data, content_type=self.content_type)]


@dataclass(frozen=True)
class FeeQuote:
    """Exact funding for one job, measured from a placeholder transaction."""

    job: PublishJob
    exact_fee: int
    required_sats: int

    def __post_init__(self) -> None:
        if self.exact_fee < 0:
            raise ValueError(f"exact_fee must be non-negative, got {self.exact_fee}")
        if self.required_sats < self.exact_fee:
            raise ValueError("required_sats cannot be below exact_fee")


@dataclass(frozen=True)
class Provision:
    """Outcome of the single funding transaction of a batch."""

    carriers: tuple[Utxo, ...]
    txid: str | None
    fee: int
    change: Utxo | None = None


@dataclass(frozen=True)
class BuiltJob:
    quote: FeeQuote
    carrier: Utxo
    tx: BuiltTransaction

    @property
    def job(self) -> PublishJob:
        return self.quote.job


@dataclass(frozen=True)
class PublishResult:
    job: PublishJob
    txid: str
    vout: int
    content_hash: str
    fee: int

    @property
    def url_path(self) -> str:
        return content_url_path(self.txid, self.vout)

    @property
    def outpoint(self) -> str:
        return format_outpoint(self.txid, self.vout)


@dataclass
class PublishBatchResult:
    results: list[PublishResult] = field(default_factory=list)
    funding_txid: str | None = None
    total_cost: int = 0
    change: Utxo | None = None

    @property
    def txids(self) -> list[str]:
        ids = [self.funding_txid] if self.funding_txid else []
        ids.extend(r.txid for r in self.results)
        return ids

    def for_path(self, path: str) -> list[PublishResult]:
        return [r for r in self.results if r.job.path == path]
