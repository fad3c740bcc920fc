"""Synchronous in-process mirror of the latest value seen for each key.

Values are kept as canonical JSON text so later mutation of the caller's
object never changes what the mirror holds, and every `get` returns a fresh
copy.
"""
from threading import RLock
from typing import Any, Dict, Iterable, Optional

from .errors import QuotaExceeded
from .serializer import JSONSerializer

MISSING = object()


def _nbytes(text: Optional[str]) -> int:
    return len(text.encode("utf-8")) if text is not None else 0


class Mirror:
    def __init__(self, max_bytes: Optional[int] = None):
        self._lock = RLock()
        self._store: Dict[str, str] = {}
        self._size = 0
        self.max_bytes = max_bytes
        self._serializer = JSONSerializer()

    def get(self, key: str, default: Any = MISSING) -> Any:
        with self._lock:
            text = self._store.get(key)
        if text is None:
            return default
        return self._serializer.load(text.encode("utf-8"))

    def get_text(self, key: str) -> Optional[str]:
        with self._lock:
            return self._store.get(key)

    def set(self, key: str, value: Any) -> None:
        self.set_text(key, self._serializer.dumps(value))

    def set_text(self, key: str, text: str) -> None:
        with self._lock:
            old = self._store.get(key)
            new_size = self._size - _nbytes(old) + _nbytes(text)
            if self.max_bytes is not None and new_size > self.max_bytes:
                raise QuotaExceeded(f"mirror budget of {self.max_bytes} bytes exceeded by {key!r}")
            self._store[key] = text
            self._size = new_size

    def delete(self, key: str) -> None:
        with self._lock:
            old = self._store.pop(key, None)
            if old is not None:
                self._size -= _nbytes(old)

    def keys(self) -> Iterable[str]:
        with self._lock:
            return list(self._store.keys())

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._store

    @property
    def size(self) -> int:
        return self._size
