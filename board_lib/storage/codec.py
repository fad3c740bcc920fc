"""Compression codec and the ordered file-format chains.

`compress`/`decompress` are the stateless codec shared by the directory tier
and the portable export helpers. A `CodecChain` lists the on-disk formats of a
key kind newest-first; readers walk it and only move on when a format is
absent, so adding a new format later means prepending it here.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .keys import KeyKind
from .serializer import GzipJSONSerializer, JSONSerializer, Serializer

CONTENT_SUFFIX = ".tom"
META_SUFFIX = ".json"

_json = JSONSerializer()
_gzip_json = GzipJSONSerializer(_json)


def compress(value: Any) -> bytes:
    """Serialize `value` to canonical JSON and gzip it."""
    return _gzip_json.dump(value)


def decompress(buffer: bytes) -> Any:
    """Inverse of `compress`. Raises `CorruptData` on a bad stream or bad JSON."""
    return _gzip_json.load(buffer)


@dataclass(frozen=True)
class FileFormat:
    suffix: str
    serializer: Serializer

    def filename(self, key: str) -> str:
        return f"{key}{self.suffix}"


class CodecChain:
    def __init__(self, *formats: FileFormat) -> None:
        if not formats:
            raise ValueError("CodecChain requires at least one format")
        self.formats: Tuple[FileFormat, ...] = formats

    @property
    def current(self) -> FileFormat:
        return self.formats[0]

    @property
    def legacy(self) -> Tuple[FileFormat, ...]:
        return self.formats[1:]

    def filenames(self, key: str) -> list[str]:
        return [f.filename(key) for f in self.formats]

    def __iter__(self):
        return iter(self.formats)


TOM_FORMAT = FileFormat(CONTENT_SUFFIX, _gzip_json)
JSON_FORMAT = FileFormat(META_SUFFIX, _json)

DEFAULT_CHAINS: Dict[KeyKind, CodecChain] = {
    KeyKind.CONTENT: CodecChain(TOM_FORMAT, JSON_FORMAT),
    KeyKind.META: CodecChain(JSON_FORMAT),
}
