"""Standalone backup files (.tom) for manual export and import.

These helpers do not touch the key/value namespace; they only wrap the
compression codec so a document can be downloaded and restored later.
"""
from __future__ import annotations
import os
from pathlib import Path
from typing import Any

from .codec import CONTENT_SUFFIX, compress, decompress


def create_portable_blob(value: Any) -> bytes:
    return compress(value)


def read_portable_blob(source: Any) -> Any:
    """Decode a portable blob from bytes, a path, or a binary file object.

    Raises `CorruptData` for damaged input and `TypeError` for anything that
    is not one of the accepted source types.
    """
    if isinstance(source, (bytes, bytearray, memoryview)):
        return decompress(bytes(source))
    if isinstance(source, (str, os.PathLike)):
        return decompress(Path(source).read_bytes())
    read = getattr(source, "read", None)
    if callable(read):
        data = read()
        if isinstance(data, str):
            raise TypeError("portable blobs must be opened in binary mode")
        return decompress(data)
    raise TypeError(f"unsupported portable blob source: {type(source).__name__}")


def write_portable_file(path: str | Path, value: Any) -> Path:
    """Write `value` to `path` as a .tom file and return the final path."""
    p = Path(path)
    if not p.suffix:
        p = p.with_name(p.name + CONTENT_SUFFIX)
    p.parent.mkdir(parents=True, exist_ok=True)
    tmp = p.with_suffix(p.suffix + ".tmp")
    with open(tmp, "wb") as f:
        f.write(create_portable_blob(value))
        f.flush()
        os.fsync(f.fileno())
    tmp.replace(p)
    return p
