"""Indexer implementation for the 1Sat ordinals HTTP API."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx

from permadeploy_core.config.models import NetworkConfig
from permadeploy_core.constants import parse_outpoint
from permadeploy_core.errors import (
    DeployError,
    InsufficientFundsError,
    SpentCarrierError,
    TransientNetworkError,
)
from permadeploy_core.interfaces.indexer import ChainTip, FundingTarget
from permadeploy_core.interfaces.transaction import Utxo
from permadeploy_core.retry import is_spent_carrier_message

logger = logging.getLogger(__name__)


def _validate_base_url(url: str) -> str:
    """Raise ValueError for non-http(s) URLs or header injection attempts."""
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"Indexer URL must be http(s), got {url!r}")
    if "\r" in url or "\n" in url:
        raise ValueError("CRLF injection detected in indexer URL")
    return url.rstrip("/")


def parse_output(encoded: str) -> tuple[int, str]:
    """Decode an ``x-output`` header: 8-byte LE satoshis, varint length, script.

    Returns ``(satoshis, script_hex)``. Raises ValueError on malformed input.
    """
    try:
        raw = base64.b64decode(encoded, validate=True)
    except binascii.Error as e:
        raise ValueError(f"x-output is not valid base64: {e}") from e
    if len(raw) < 9:
        raise ValueError("x-output too short")

    satoshis = int.from_bytes(raw[:8], "little")
    prefix = raw[8]
    pos = 9
    if prefix < 0xFD:
        length = prefix
    else:
        width = {0xFD: 2, 0xFE: 4, 0xFF: 8}[prefix]
        length = int.from_bytes(raw[pos : pos + width], "little")
        pos += width
    script = raw[pos : pos + length]
    if len(script) != length:
        raise ValueError("x-output script truncated")
    return satoshis, script.hex()


def _check_response(resp: httpx.Response, operation: str) -> None:
    if resp.is_success:
        return
    detail = resp.text.strip()
    message = f"{operation} failed: HTTP {resp.status_code}: {detail}"
    if resp.status_code == 429 or resp.status_code >= 500:
        raise TransientNetworkError(message)
    if is_spent_carrier_message(detail):
        raise SpentCarrierError(message)
    raise DeployError(message)


class OrdinalsIndexer:
    """UTXO listing, broadcast and chain-tip lookup over httpx.

    Pass *client* to share one ``httpx.AsyncClient`` (tests pass one built on
    ``httpx.MockTransport``); otherwise a client is opened per call.
    """

    def __init__(
        self,
        indexer_url: str = "https://ordinals.1sat.app",
        content_url: str = "https://ordfs.network",
        timeout: float = 30.0,
        page_limit: int = 100,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._indexer_url = _validate_base_url(indexer_url)
        self._content_url = _validate_base_url(content_url)
        self._timeout = timeout
        self._page_limit = page_limit
        self._client = client

    @classmethod
    def from_config(
        cls, config: NetworkConfig, client: httpx.AsyncClient | None = None
    ) -> OrdinalsIndexer:
        return cls(
            indexer_url=config.indexer_url,
            content_url=config.content_url,
            timeout=config.timeout,
            page_limit=config.page_limit,
            client=client,
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _request(self, method: str, url: str, operation: str, **kwargs) -> httpx.Response:
        try:
            async with self._session() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{operation} failed: {e}", e) from e

    async def list_unspent(
        self, address: str, target: FundingTarget | None = None
    ) -> list[Utxo]:
        """Spendable (more than 1 sat) outputs owned by *address*.

        With a *target*, pages stop as soon as the largest-first selection
        covers it and only that selection is returned.
        """
        required = target.required_sats if target is not None else 0
        found: list[Utxo] = []
        cursor = 0

        while True:
            resp = await self._request(
                "GET",
                f"{self._indexer_url}/v5/evt/p2pkh/own/{address}",
                "UTXO listing",
                params={
                    "unspent": "true",
                    "txo": "true",
                    "script": "true",
                    "from": cursor,
                    "limit": self._page_limit,
                },
            )
            _check_response(resp, "UTXO listing")
            page = resp.json() or []
            if not page:
                break

            for item in page:
                txid, vout = parse_outpoint(item["outpoint"])
                satoshis = int(item.get("satoshis", 0))
                if satoshis <= 1:
                    continue
                found.append(
                    Utxo(
                        txid=txid,
                        vout=vout,
                        satoshis=satoshis,
                        script=item.get("script") or "",
                        owner=item.get("owner") or address,
                    )
                )

            if target is not None:
                selected = self._select(found, required)
                if selected is not None:
                    return selected
            if len(page) < self._page_limit:
                break
            cursor = page[-1]["score"]

        if target is None:
            return found
        raise InsufficientFundsError(address, required, sum(u.satoshis for u in found))

    @staticmethod
    def _select(utxos: list[Utxo], required: int) -> list[Utxo] | None:
        selected = []
        total = 0
        for utxo in sorted(utxos, key=lambda u: u.satoshis, reverse=True):
            selected.append(utxo)
            total += utxo.satoshis
            if total >= required:
                return selected
        return None

    async def broadcast(self, raw_hex: str) -> str:
        resp = await self._request(
            "POST",
            f"{self._indexer_url}/v5/tx",
            "Broadcast",
            content=raw_hex,
            headers={"Content-Type": "text/plain"},
        )
        _check_response(resp, "Broadcast")
        txid = resp.json().get("txid")
        if not txid:
            raise DeployError(f"Broadcast response has no txid: {resp.text}")
        logger.debug("Broadcast %s", txid)
        return txid

    async def fetch_latest_in_chain(self, origin: str, include_utxo: bool = True) -> ChainTip:
        """Latest carrier in *origin*'s chain from the content service headers.

        A chain with no ``x-map`` header has no metadata yet; unparseable
        metadata is logged and treated the same way.
        """
        resp = await self._request(
            "GET",
            f"{self._content_url}/content/{origin}",
            "Chain tip lookup",
            params={"seq": "-1", "map": "true", "out": "true" if include_utxo else "false"},
        )
        if resp.status_code == 404:
            logger.warning("No carrier found for origin %s", origin)
            return ChainTip(origin=origin)
        _check_response(resp, "Chain tip lookup")

        metadata = None
        raw_map = resp.headers.get("x-map")
        if raw_map:
            try:
                parsed = json.loads(raw_map)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed x-map metadata for %s", origin)
            else:
                if isinstance(parsed, dict):
                    metadata = {k: v if isinstance(v, str) else json.dumps(v) for k, v in parsed.items()}

        utxo = None
        outpoint = resp.headers.get("x-outpoint")
        if include_utxo and outpoint:
            txid, vout = parse_outpoint(outpoint)
            satoshis, script = 1, ""
            raw_output = resp.headers.get("x-output")
            if raw_output:
                try:
                    satoshis, script = parse_output(raw_output)
                except ValueError as e:
                    logger.warning("Ignoring malformed x-output for %s: %s", origin, e)
            utxo = Utxo(txid=txid, vout=vout, satoshis=satoshis, script=script)

        return ChainTip(origin=origin, utxo=utxo, metadata=metadata)
