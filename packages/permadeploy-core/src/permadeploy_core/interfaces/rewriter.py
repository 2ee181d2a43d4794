"""Byte Rewriter interface."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol, runtime_checkable


@runtime_checkable
class ByteRewriter(Protocol):
    """Rewrites references inside a file so they point at published URLs."""

    def rewrite(
        self,
        data: bytes,
        content_type: str,
        source_path: str,
        url_map: Mapping[str, str],
    ) -> bytes: ...


class PassthroughRewriter:
    """Default rewriter: returns the bytes unchanged."""

    def rewrite(
        self,
        data: bytes,
        content_type: str,
        source_path: str,
        url_map: Mapping[str, str],
    ) -> bytes:
        return data
