"""Transaction Builder interface and the value types it exchanges."""

from __future__ import annotations

from typing import Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from permadeploy_core.constants import format_outpoint


class Utxo(BaseModel):
    """An unspent, address-bound value unit (a Carrier when sized for one job)."""

    model_config = ConfigDict(frozen=True)

    txid: str
    vout: int
    satoshis: int
    script: str = ""
    owner: str | None = None

    @property
    def outpoint(self) -> str:
        return format_outpoint(self.txid, self.vout)


class TxOutput(BaseModel):
    """One output of a transaction to be built.

    ``inscription`` outputs carry ``data`` in a 1-sat ordinal envelope,
    ``data`` outputs carry it in a zero-value data script, ``payment``
    outputs pay ``address``.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["payment", "inscription", "data", "change"]
    satoshis: int
    address: str | None = None
    data: bytes | None = None
    content_type: str | None = None


class BuiltTransaction(BaseModel):
    """A signed, serialized transaction that has not been broadcast yet."""

    model_config = ConfigDict(frozen=True)

    txid: str
    raw_hex: str
    fee: int
    inputs: tuple[Utxo, ...]
    outputs: tuple[TxOutput, ...]
    metadata: dict[str, str] | None = None

    @property
    def input_total(self) -> int:
        return sum(u.satoshis for u in self.inputs)

    @property
    def output_total(self) -> int:
        return sum(o.satoshis for o in self.outputs)

    @property
    def has_change(self) -> bool:
        return any(o.kind == "change" for o in self.outputs)

    def output_index(self, kind: str) -> int:
        """Index of the first output of *kind*; raises ValueError if absent."""
        for i, output in enumerate(self.outputs):
            if output.kind == kind:
                return i
        raise ValueError(f"Transaction {self.txid} has no '{kind}' output")


@runtime_checkable
class TransactionBuilder(Protocol):
    """Signs and serializes transactions for one signing key.

    ``build`` adds a change output paying ``change_address`` only when one is
    given; without it the whole surplus of inputs over outputs is the fee.
    The reported ``fee`` is the exact fee of the built transaction.
    """

    @property
    def address(self) -> str: ...

    async def build(
        self,
        inputs: list[Utxo],
        outputs: list[TxOutput],
        *,
        change_address: str | None = None,
        sats_per_kb: int = 1,
        metadata: dict[str, str] | None = None,
    ) -> BuiltTransaction: ...
