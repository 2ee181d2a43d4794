"""Shared test fixtures for permadeploy."""

from __future__ import annotations

import hashlib
import math
from pathlib import Path

import pytest

from permadeploy_core.config.models import PermadeployConfig, RetryConfig
from permadeploy_core.constants import MIB, TX_BASE_SIZE, TX_INPUT_SIZE, TX_OUTPUT_SIZE
from permadeploy_core.errors import InsufficientFundsError
from permadeploy_core.interfaces.indexer import ChainTip, FundingTarget
from permadeploy_core.interfaces.transaction import BuiltTransaction, TxOutput, Utxo
from permadeploy_core.retry import RetryPolicy

ADDRESS = "1PermadeployTestAddress"


# ── In-memory chain ────────────────────────────────────────────────


class FakeLedger:
    """Signed transactions by raw hex, shared by the fake builder and indexer."""

    def __init__(self) -> None:
        self.txs: dict[str, BuiltTransaction] = {}


class FakeBuilder:
    """TransactionBuilder double with a byte-size fee model.

    A change output is always counted in the size when ``change_address``
    is given, mirroring how the placeholder quote is measured.
    """

    def __init__(self, ledger: FakeLedger, address: str = ADDRESS) -> None:
        self._ledger = ledger
        self._address = address
        self._counter = 0
        self.built: list[BuiltTransaction] = []

    @property
    def address(self) -> str:
        return self._address

    async def build(
        self,
        inputs: list[Utxo],
        outputs: list[TxOutput],
        *,
        change_address: str | None = None,
        sats_per_kb: int = 1,
        metadata: dict[str, str] | None = None,
    ) -> BuiltTransaction:
        self._counter += 1
        input_total = sum(u.satoshis for u in inputs)
        output_total = sum(o.satoshis for o in outputs)
        final_outputs = list(outputs)

        if change_address is not None:
            data_bytes = sum(len(o.data or b"") for o in outputs)
            size = (
                TX_BASE_SIZE
                + TX_INPUT_SIZE * len(inputs)
                + TX_OUTPUT_SIZE * (len(outputs) + 1)
                + data_bytes
            )
            fee = math.ceil(size * sats_per_kb / 1000)
            change = input_total - output_total - fee
            if change < 0:
                raise ValueError("Inputs do not cover outputs and fee")
            if change > 0:
                final_outputs.append(TxOutput(kind="change", satoshis=change, address=change_address))
        else:
            fee = input_total - output_total
            if fee < 0:
                raise ValueError("Inputs do not cover outputs")

        digest = hashlib.sha256(
            f"{self._counter}|{[u.outpoint for u in inputs]}|{len(final_outputs)}".encode()
        ).hexdigest()
        tx = BuiltTransaction(
            txid=digest,
            raw_hex="01" + digest,
            fee=fee,
            inputs=tuple(inputs),
            outputs=tuple(final_outputs),
            metadata=metadata,
        )
        self._ledger.txs[tx.raw_hex] = tx
        self.built.append(tx)
        return tx


class FakeIndexer:
    """Indexer double that applies broadcast transactions to its UTXO set.

    Spending an unknown or already-spent outpoint fails like a node would.
    Inscription outputs carrying ``type: version`` metadata start or extend
    a version chain.
    """

    def __init__(self, ledger: FakeLedger) -> None:
        self._ledger = ledger
        self.utxos: dict[str, Utxo] = {}
        self.chains: dict[str, ChainTip] = {}
        self.broadcasts: list[str] = []
        self.failures: list[Exception] = []
        self._funded = 0

    def fund(self, address: str, *amounts: int) -> None:
        for amount in amounts:
            self._funded += 1
            txid = hashlib.sha256(f"funding-{self._funded}".encode()).hexdigest()
            utxo = Utxo(txid=txid, vout=0, satoshis=amount, owner=address)
            self.utxos[utxo.outpoint] = utxo

    def balance(self, address: str) -> int:
        return sum(u.satoshis for u in self.utxos.values() if u.owner == address)

    async def list_unspent(
        self, address: str, target: FundingTarget | None = None
    ) -> list[Utxo]:
        found = [u for u in self.utxos.values() if u.owner == address and u.satoshis > 1]
        if target is None:
            return found
        selected, total = [], 0
        for utxo in sorted(found, key=lambda u: u.satoshis, reverse=True):
            selected.append(utxo)
            total += utxo.satoshis
            if total >= target.required_sats:
                return selected
        raise InsufficientFundsError(address, target.required_sats, total)

    async def broadcast(self, raw_hex: str) -> str:
        self.broadcasts.append(raw_hex)
        if self.failures:
            raise self.failures.pop(0)
        tx = self._ledger.txs[raw_hex]
        for utxo in tx.inputs:
            if utxo.outpoint not in self.utxos:
                raise RuntimeError(f"bad-txns-inputs-spent: {utxo.outpoint}")
        for utxo in tx.inputs:
            del self.utxos[utxo.outpoint]

        for vout, output in enumerate(tx.outputs):
            if output.kind == "data" or output.satoshis == 0:
                continue
            utxo = Utxo(txid=tx.txid, vout=vout, satoshis=output.satoshis, owner=output.address)
            self.utxos[utxo.outpoint] = utxo
            if output.kind == "inscription" and (tx.metadata or {}).get("type") == "version":
                self._advance_chain(tx, utxo)
        return tx.txid

    def _advance_chain(self, tx: BuiltTransaction, utxo: Utxo) -> None:
        spent = {u.outpoint for u in tx.inputs}
        for origin, tip in self.chains.items():
            if tip.utxo is not None and tip.utxo.outpoint in spent:
                self.chains[origin] = ChainTip(origin=origin, utxo=utxo, metadata=dict(tx.metadata))
                return
        self.chains[utxo.outpoint] = ChainTip(
            origin=utxo.outpoint, utxo=utxo, metadata=dict(tx.metadata)
        )

    async def fetch_latest_in_chain(self, origin: str, include_utxo: bool = True) -> ChainTip:
        tip = self.chains.get(origin)
        if tip is None:
            return ChainTip(origin=origin)
        return ChainTip(
            origin=origin,
            utxo=tip.utxo if include_utxo else None,
            metadata=tip.metadata,
        )


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def builder(ledger):
    return FakeBuilder(ledger)


@pytest.fixture
def indexer(ledger):
    idx = FakeIndexer(ledger)
    idx.fund(ADDRESS, 50_000_000, 20_000_000)
    return idx


@pytest.fixture
def fast_policy():
    """Three attempts, no sleeping."""
    return RetryPolicy(max_attempts=3, initial_delay=0.0, max_delay=0.0)


# ── Config ─────────────────────────────────────────────────────────


@pytest.fixture
def sample_config(tmp_path):
    return PermadeployConfig(
        retry=RetryConfig(max_attempts=3, initial_delay=0.0, max_delay=0.0),
        record={"path": str(tmp_path / "deployment-manifest.json")},
    )


# ── Build trees ────────────────────────────────────────────────────


def write_tree(root: Path, files: dict[str, bytes | str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            path.write_text(content)
        else:
            path.write_bytes(content)
    return root


INDEX_HTML = """<!doctype html>
<html>
<head><title>demo</title></head>
<body>
  <video src="video.mp4" controls></video>
  <script type="module" src="./app.js"></script>
</body>
</html>
"""

APP_JS = """const logo = "./logo.svg";
document.querySelector("#logo").src = logo;
"""


@pytest.fixture
def site_tree(tmp_path):
    """index.html -> app.js -> logo.svg (2 KB) plus a 12 MiB video."""
    logo = '<svg xmlns="http://www.w3.org/2000/svg">' + "<g/>" * 500 + "</svg>"
    video = bytes(range(256)) * (12 * MIB // 256)
    return write_tree(
        tmp_path / "dist",
        {
            "index.html": INDEX_HTML,
            "app.js": APP_JS,
            "logo.svg": logo[:2048].ljust(2048),
            "video.mp4": video,
        },
    )


@pytest.fixture
def small_tree(tmp_path):
    """A tree with no chunking: index.html -> app.js -> logo.svg, plus style.css."""
    return write_tree(
        tmp_path / "site",
        {
            "index.html": '<link rel="stylesheet" href="style.css"><script src="app.js"></script>',
            "app.js": APP_JS,
            "logo.svg": "<svg></svg>",
            "style.css": "body { background: url(./logo.svg); }",
        },
    )
