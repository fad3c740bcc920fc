"""Public storage surface used by the dashboard and canvas code.

One `StorageManager` is built at the application root (see
`board_lib.main.create_manager`) and handed to whoever needs it.
"""
from __future__ import annotations
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional

from . import portable
from .directory import DirectoryPlatform, PermissionState
from .keys import KeyKind, KeyRegistry
from .metadata_store import MetadataStore
from .mirror import Mirror
from .permission import PermissionGate
from .sync import SyncEngine, SyncReport
from .tiered_store import TieredStore

logger = logging.getLogger(__name__)


class BackendMode(Enum):
    DIRECTORY_CAPABLE = "native"
    EMBEDDED_ONLY = "embedded"


class StorageManager:
    def __init__(
        self,
        platform: DirectoryPlatform,
        metadata: MetadataStore,
        registry: KeyRegistry,
        meta_keys: Optional[list[str]] = None,
        index_key: str = "wb_boards",
        mirror: Optional[Mirror] = None,
    ) -> None:
        self.metadata = metadata
        self.registry = registry
        self.gate = PermissionGate(platform, metadata)
        self.store = TieredStore(self.gate, metadata, registry, mirror=mirror, on_warning=self._on_store_warning)
        self.sync_engine = SyncEngine(self.store, registry, meta_keys or registry.keys(KeyKind.META), index_key=index_key)
        self.gate.on_directory_selected = self._sync_after_pick
        self.gate.on_permission_granted = self._catch_up_folder
        self.mode = BackendMode.EMBEDDED_ONLY
        self.last_sync: Optional[SyncReport] = None
        self.last_catch_up: Optional[SyncReport] = None
        self.on_storage_warning: Optional[Callable[[str, Exception], Any]] = None
        self._initialized = False

    @property
    def on_storage_change(self) -> Optional[Callable[[], Any]]:
        """Called after the folder is picked or its permission is granted."""
        return self.gate.on_storage_change

    @on_storage_change.setter
    def on_storage_change(self, callback: Optional[Callable[[], Any]]) -> None:
        self.gate.on_storage_change = callback

    @property
    def permission_state(self) -> PermissionState:
        return self.gate.state

    @property
    def has_directory(self) -> bool:
        return self.gate.active_handle is not None

    @property
    def needs_permission(self) -> bool:
        """A folder is remembered but needs a click to be used again."""
        return self.gate.stored_handle is not None and self.gate.active_handle is None

    async def init(self) -> None:
        if self._initialized:
            return
        if self.gate.detect_capability():
            self.mode = BackendMode.DIRECTORY_CAPABLE
            handle = await self.gate.restore_handle()
            if handle is not None:
                await self.gate.verify_permission(handle)
        else:
            self.mode = BackendMode.EMBEDDED_ONLY
        await self.store.load_unsynced()
        self._initialized = True
        if self.has_directory and self.store.unsynced():
            await self._catch_up_folder()
        # board ids from the index register their content keys
        content_keys = await self.sync_engine.content_keys()
        logger.info("Storage initialized in [%s] mode, %d boards indexed.", self.mode.value, len(content_keys))

    async def pick_storage_folder(self) -> bool:
        await self.init()
        return await self.gate.pick_directory()

    async def request_stored_permission(self) -> bool:
        await self.init()
        if self.gate.stored_handle is None:
            return False
        return await self.gate.request_permission() is PermissionState.GRANTED

    async def save_item(self, key: str, value: Any, kind: Optional[KeyKind] = None) -> asyncio.Task:
        await self.init()
        return await self.store.set(key, value, kind=kind)

    async def get_item(self, key: str, default: Any = None, kind: Optional[KeyKind] = None) -> Any:
        await self.init()
        return await self.store.get(key, default, kind=kind)

    def peek_item(self, key: str, default: Any = None) -> Any:
        return self.store.peek(key, default)

    async def remove_item(self, key: str) -> None:
        await self.init()
        await self.store.remove(key)

    def content_key(self, board_id) -> str:
        return self.registry.content_key(board_id)

    def create_portable_blob(self, value: Any) -> bytes:
        return portable.create_portable_blob(value)

    def read_portable_blob(self, source: Any) -> Any:
        return portable.read_portable_blob(source)

    async def flush(self) -> None:
        await self.store.flush()

    async def close(self) -> None:
        await self.store.flush()
        self.metadata.close()

    async def _sync_after_pick(self) -> None:
        await self._catch_up_folder()
        self.last_sync = await self.sync_engine.bulk_sync()

    async def _catch_up_folder(self) -> None:
        self.last_catch_up = await self.sync_engine.replay(self.store.unsynced())

    def _on_store_warning(self, key: str, exc: Exception) -> None:
        if self.on_storage_warning is None:
            return
        self.on_storage_warning(key, exc)
