"""ChunkManifest wire format."""

from __future__ import annotations

import json

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from permadeploy_core.constants import CHUNK_MANIFEST_VERSION, content_url_path
from permadeploy_core.errors import IntegrityError


class ChunkEntry(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    index: int = Field(ge=0)
    txid: str
    vout: int = Field(ge=0)
    url_path: str = Field(alias="urlPath")
    size: int = Field(gt=0)


class ChunkManifest(BaseModel):
    """Describes how a chunked file is reassembled from its carriers.

    Chunks are index-ordered, indices run 0..n-1, and sizes sum to
    ``total_size``; construction fails otherwise.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = CHUNK_MANIFEST_VERSION
    original_path: str = Field(alias="originalPath")
    mime_type: str = Field(alias="mimeType")
    total_size: int = Field(alias="totalSize", ge=0)
    chunk_size: int = Field(alias="chunkSize", ge=0)
    chunks: tuple[ChunkEntry, ...]

    @model_validator(mode="after")
    def _check_coverage(self) -> ChunkManifest:
        indices = [c.index for c in self.chunks]
        if indices != list(range(len(self.chunks))):
            raise ValueError(f"chunk indices must be 0..{len(self.chunks) - 1} in order, got {indices}")
        covered = sum(c.size for c in self.chunks)
        if covered != self.total_size:
            raise ValueError(f"chunk sizes sum to {covered}, expected totalSize {self.total_size}")
        return self

    @classmethod
    def build(
        cls,
        original_path: str,
        mime_type: str,
        chunks: list[tuple[str, int, int]],
        chunk_size: int,
    ) -> ChunkManifest:
        """Build from ``(txid, vout, size)`` triples given in chunk order."""
        entries = tuple(
            ChunkEntry(
                index=i,
                txid=txid,
                vout=vout,
                url_path=content_url_path(txid, vout),
                size=size,
            )
            for i, (txid, vout, size) in enumerate(chunks)
        )
        return cls(
            original_path=original_path,
            mime_type=mime_type,
            total_size=sum(e.size for e in entries),
            chunk_size=chunk_size,
            chunks=entries,
        )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), separators=(",", ":"))

    @classmethod
    def from_wire(cls, data: object) -> ChunkManifest:
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise IntegrityError(f"Malformed chunk manifest: {e}", e) from e

    @classmethod
    def from_json(cls, text: str | bytes) -> ChunkManifest:
        try:
            data = json.loads(text)
        except ValueError as e:
            raise IntegrityError(f"Chunk manifest is not valid JSON: {e}", e) from e
        return cls.from_wire(data)
