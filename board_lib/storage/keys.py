"""Key kinds and the registry that resolves them.

Whether a key is compressed is decided here, explicitly, instead of by looking
at the key's text inside the store.
"""
from __future__ import annotations
from enum import Enum
from threading import RLock
from typing import Dict, Iterable, Optional


class KeyKind(Enum):
    CONTENT = "content"
    META = "meta"


class KeyRegistry:
    """Maps storage keys to their `KeyKind`.

    Meta keys are registered up front; content keys are minted with
    `content_key(board_id)`, which registers them as a side effect. A key
    that was never registered but carries the content prefix is still a
    content key, so a key saved by its string after a restart keeps its
    compressed form. Everything else resolves to META.
    """

    def __init__(self, content_prefix: str = "wb_content_", meta_keys: Iterable[str] = ()) -> None:
        self.content_prefix = content_prefix
        self._lock = RLock()
        self._kinds: Dict[str, KeyKind] = {}
        for key in meta_keys:
            self.register(key, KeyKind.META)

    def register(self, key: str, kind: KeyKind) -> None:
        with self._lock:
            self._kinds[key] = kind

    def content_key(self, board_id) -> str:
        key = f"{self.content_prefix}{board_id}"
        self.register(key, KeyKind.CONTENT)
        return key

    def kind_of(self, key: str, override: Optional[KeyKind] = None) -> KeyKind:
        if override is not None:
            return override
        with self._lock:
            kind = self._kinds.get(key)
        if kind is not None:
            return kind
        if self.content_prefix and key.startswith(self.content_prefix):
            return KeyKind.CONTENT
        return KeyKind.META

    def keys(self, kind: Optional[KeyKind] = None) -> list[str]:
        with self._lock:
            return [k for k, v in self._kinds.items() if kind is None or v is kind]
