from typing import Any, Protocol
import gzip
import json
import zlib

from .errors import CorruptData


class Serializer(Protocol):
    """Serialize/deserialize JSON values for tiers that store bytes.

    Implementations should be symmetric: `dump` -> bytes, `load` <- bytes.
    `load` raises `CorruptData` when the bytes cannot be decoded.
    """

    def dump(self, value: Any) -> bytes: ...

    def load(self, data: bytes) -> Any: ...


class JSONSerializer:
    """Canonical UTF-8 JSON: compact separators, key order preserved.

    Non-JSON values (sets, arbitrary objects, NaN) raise `TypeError`.
    """

    def dump(self, value: Any) -> bytes:
        return self.dumps(value).encode("utf-8")

    def dumps(self, value: Any) -> str:
        try:
            return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
        except ValueError as e:
            raise TypeError(f"value is not JSON-serializable: {e}") from e

    def load(self, data: bytes) -> Any:
        try:
            return json.loads(bytes(data).decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise CorruptData(f"invalid JSON payload: {e}") from e


class GzipJSONSerializer:
    """Serializer producing gzip-compressed canonical JSON.

    Drawing documents are highly repetitive, so the gzip frame usually saves
    60-80% over the plain text. `mtime=0` keeps the output deterministic for a
    given value.
    """

    def __init__(self, base_serializer: JSONSerializer | None = None, compresslevel: int = 9) -> None:
        self.base_serializer = base_serializer or JSONSerializer()
        self.compresslevel = compresslevel

    def dump(self, value: Any) -> bytes:
        return gzip.compress(self.base_serializer.dump(value), compresslevel=self.compresslevel, mtime=0)

    def load(self, data: bytes) -> Any:
        try:
            inner = gzip.decompress(bytes(data))
        except (OSError, EOFError, zlib.error) as e:
            raise CorruptData(f"invalid gzip stream: {e}") from e
        return self.base_serializer.load(inner)
