"""Tests for the ordinals HTTP indexer, driven through httpx.MockTransport."""

from __future__ import annotations

import base64
import json

import httpx
import pytest

from permadeploy_core.config.models import NetworkConfig
from permadeploy_core.errors import (
    DeployError,
    InsufficientFundsError,
    SpentCarrierError,
    TransientNetworkError,
)
from permadeploy_core.indexer import OrdinalsIndexer, parse_output
from permadeploy_core.interfaces.indexer import FundingTarget, Indexer

ADDR = "1IndexerTestAddress"


# -- Helpers ----------------------------------------------------------------


def make_indexer(handler, **kwargs) -> OrdinalsIndexer:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OrdinalsIndexer(
        indexer_url="https://idx.example",
        content_url="https://ordfs.example",
        client=client,
        **kwargs,
    )


def utxo_item(n: int, sats: int, score: int) -> dict:
    return {"outpoint": f"{n:064x}_0", "satoshis": sats, "script": "76a9", "score": score}


def encode_output(sats: int, script: bytes) -> str:
    return base64.b64encode(sats.to_bytes(8, "little") + bytes([len(script)]) + script).decode()


# -- parse_output -----------------------------------------------------------


class TestParseOutput:
    def test_single_byte_length(self):
        assert parse_output(encode_output(1, b"\x76\xa9")) == (1, "76a9")

    def test_fd_varint_length(self):
        script = b"\x51" * 300
        raw = (5000).to_bytes(8, "little") + b"\xfd" + (300).to_bytes(2, "little") + script
        sats, script_hex = parse_output(base64.b64encode(raw).decode())
        assert sats == 5000
        assert script_hex == "51" * 300

    @pytest.mark.parametrize("bad", ["***", base64.b64encode(b"\x01\x02").decode()])
    def test_malformed(self, bad):
        with pytest.raises(ValueError):
            parse_output(bad)

    def test_truncated_script(self):
        raw = (1).to_bytes(8, "little") + bytes([10]) + b"\x00"
        with pytest.raises(ValueError, match="truncated"):
            parse_output(base64.b64encode(raw).decode())


# -- Construction -----------------------------------------------------------


def test_rejects_non_http_url():
    with pytest.raises(ValueError):
        OrdinalsIndexer(indexer_url="ftp://idx.example")


def test_rejects_crlf_in_url():
    with pytest.raises(ValueError, match="CRLF"):
        OrdinalsIndexer(content_url="https://ordfs.example/\r\nX-Evil: 1")


def test_from_config_satisfies_protocol():
    indexer = OrdinalsIndexer.from_config(NetworkConfig(indexer_url="https://idx.example/"))
    assert isinstance(indexer, Indexer)


# -- list_unspent -----------------------------------------------------------


@pytest.mark.asyncio
async def test_list_unspent_pages_by_score():
    pages = {
        "0": [utxo_item(1, 1000, 10), utxo_item(2, 1, 11)],
        "11": [utxo_item(3, 500, 12)],
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/v5/evt/p2pkh/own/{ADDR}"
        assert request.url.params["unspent"] == "true"
        cursor = request.url.params["from"]
        seen.append(cursor)
        return httpx.Response(200, json=pages[cursor])

    utxos = await make_indexer(handler, page_limit=2).list_unspent(ADDR)

    assert seen == ["0", "11"]
    # 1-sat outputs are inscriptions, not spendable funds
    assert [u.satoshis for u in utxos] == [1000, 500]
    assert utxos[0].owner == ADDR
    assert utxos[0].script == "76a9"


@pytest.mark.asyncio
async def test_list_unspent_with_target_stops_when_covered():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=[utxo_item(1, 300, 1), utxo_item(2, 900, 2)])

    target = FundingTarget(unspent_value=800)
    utxos = await make_indexer(handler, page_limit=2).list_unspent(ADDR, target)

    assert [u.satoshis for u in utxos] == [900]
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_list_unspent_with_target_insufficient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[utxo_item(1, 300, 1)])

    with pytest.raises(InsufficientFundsError) as exc_info:
        await make_indexer(handler).list_unspent(ADDR, FundingTarget(unspent_value=10_000))
    assert exc_info.value.available == 300


@pytest.mark.asyncio
async def test_list_unspent_server_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="bad gateway")

    with pytest.raises(TransientNetworkError):
        await make_indexer(handler).list_unspent(ADDR)


# -- broadcast --------------------------------------------------------------


@pytest.mark.asyncio
async def test_broadcast_posts_raw_hex():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/v5/tx"
        assert request.headers["content-type"] == "text/plain"
        assert request.content == b"0100beef"
        return httpx.Response(200, json={"txid": "ab" * 32})

    assert await make_indexer(handler).broadcast("0100beef") == "ab" * 32


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, expected",
    [
        (400, "txn-mempool-conflict", SpentCarrierError),
        (429, "slow down", TransientNetworkError),
        (500, "internal", TransientNetworkError),
        (400, "bad-txns-vout-negative", DeployError),
    ],
)
async def test_broadcast_error_classification(status, body, expected):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=body)

    with pytest.raises(expected) as exc_info:
        await make_indexer(handler).broadcast("00")
    assert type(exc_info.value) is expected


@pytest.mark.asyncio
async def test_connection_failure_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientNetworkError):
        await make_indexer(handler).broadcast("00")


@pytest.mark.asyncio
async def test_broadcast_without_txid_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "ok"})

    with pytest.raises(DeployError, match="no txid"):
        await make_indexer(handler).broadcast("00")


# -- fetch_latest_in_chain --------------------------------------------------


@pytest.mark.asyncio
async def test_fetch_latest_reads_headers():
    origin = "a" * 64 + "_0"
    tip = "b" * 64 + "_1"

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "ordfs.example"
        assert request.url.path == f"/content/{origin}"
        assert request.url.params["seq"] == "-1"
        assert request.url.params["map"] == "true"
        return httpx.Response(
            200,
            headers={
                "x-map": json.dumps({"app": "shop", "version.1.0.0": {"outpoint": "c_0"}}),
                "x-outpoint": tip,
                "x-output": encode_output(1, b"\x76"),
            },
        )

    result = await make_indexer(handler).fetch_latest_in_chain(origin)

    assert result.origin == origin
    assert result.utxo.outpoint == tip
    assert result.utxo.satoshis == 1
    assert result.metadata["app"] == "shop"
    # non-string values are kept as their JSON text
    assert json.loads(result.metadata["version.1.0.0"]) == {"outpoint": "c_0"}


@pytest.mark.asyncio
async def test_fetch_latest_missing_chain():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    result = await make_indexer(handler).fetch_latest_in_chain("x_0")
    assert result.utxo is None
    assert result.metadata is None


@pytest.mark.asyncio
async def test_fetch_latest_malformed_map_is_ignored():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, headers={"x-map": "{nope", "x-outpoint": "d" * 64 + "_0"})

    result = await make_indexer(handler).fetch_latest_in_chain("x_0")
    assert result.metadata is None
    assert result.utxo.vout == 0


@pytest.mark.asyncio
async def test_fetch_latest_without_utxo():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["out"] == "false"
        return httpx.Response(200, headers={"x-map": "{}", "x-outpoint": "d" * 64 + "_0"})

    result = await make_indexer(handler).fetch_latest_in_chain("x_0", include_utxo=False)
    assert result.utxo is None
    assert result.metadata == {}
