"""Lifecycle of the directory capability token.

The gate owns two separate facts: the token it holds (restored from the
metadata store or freshly picked) and the last known permission state of
that token. Holding a token never implies it may be used; the tiered store
calls `current_directory()` before every directory operation, and a DENIED
answer only affects that one operation.

`request_permission` and `pick_directory` show platform prompts and must only
be called from a user action (click, tap). The prompt and picker calls run
inline on the calling thread, because a platform only shows them while that
user action is being handled. Silent permission queries go through
`asyncio.to_thread` like the rest of the handle I/O.
"""
from __future__ import annotations
import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Set

from .directory import DirectoryHandle, DirectoryPlatform, PermissionState
from .metadata_store import FOLDER_HANDLE_SETTING, MetadataStore

logger = logging.getLogger(__name__)


class PermissionGate:
    def __init__(
        self,
        platform: DirectoryPlatform,
        metadata: MetadataStore,
        on_directory_selected: Optional[Callable[[], Awaitable[Any]]] = None,
        on_storage_change: Optional[Callable[[], Any]] = None,
        on_permission_granted: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> None:
        self.platform = platform
        self.metadata = metadata
        self.on_directory_selected = on_directory_selected
        self.on_storage_change = on_storage_change
        self.on_permission_granted = on_permission_granted
        self.stored_handle: Optional[DirectoryHandle] = None
        self.state = PermissionState.UNCHECKED
        self._capable: Optional[bool] = None
        self._callbacks: Set[asyncio.Future] = set()

    def detect_capability(self) -> bool:
        """Whether the platform offers folder access at all (cached)."""
        if self._capable is None:
            try:
                self._capable = bool(self.platform.supports_directory_access())
            except Exception:
                logger.exception("Directory capability detection failed")
                self._capable = False
        return self._capable

    @property
    def active_handle(self) -> Optional[DirectoryHandle]:
        if self.state is PermissionState.GRANTED:
            return self.stored_handle
        return None

    async def restore_handle(self) -> Optional[DirectoryHandle]:
        """Load the persisted token, if any. Never prompts."""
        if not self.detect_capability():
            return None
        try:
            token = await asyncio.to_thread(self.metadata.get_setting, FOLDER_HANDLE_SETTING)
        except Exception as e:
            logger.error("Could not read stored folder handle: %s", e)
            return None
        if token is None:
            return None
        try:
            handle = self.platform.handle_from_token(token)
        except Exception as e:
            logger.warning("Ignoring unreadable folder handle %r: %s", token, e)
            return None
        self.stored_handle = handle
        self.state = PermissionState.UNCHECKED
        return handle

    async def verify_permission(self, handle: Optional[DirectoryHandle] = None) -> bool:
        """Query the current permission without prompting."""
        handle = handle or self.stored_handle
        if handle is None:
            return False
        try:
            state = await asyncio.to_thread(handle.query_permission)
        except Exception as e:
            logger.warning("Permission query for %s failed: %s", getattr(handle, "name", handle), e)
            state = PermissionState.DENIED
        if handle is self.stored_handle:
            if state is not self.state:
                logger.info("Folder permission for %s is now %s", handle.name, state.value)
            self.state = state
        return state is PermissionState.GRANTED

    async def current_directory(self) -> Optional[DirectoryHandle]:
        """Return the held handle if it is usable for this operation."""
        if not self.detect_capability() or self.stored_handle is None:
            return None
        if await self.verify_permission(self.stored_handle):
            return self.stored_handle
        return None

    async def request_permission(self, handle: Optional[DirectoryHandle] = None) -> PermissionState:
        """Prompt for access to `handle` (default: the stored one).

        Must run inside a user action. On GRANTED the handle becomes the
        active one, `on_permission_granted` catches the folder up with writes
        it missed, and then the change callback fires.
        """
        handle = handle or self.stored_handle
        if handle is None:
            return PermissionState.DENIED
        try:
            state = handle.request_permission()
        except Exception as e:
            logger.error("Permission request failed: %s", e)
            return PermissionState.DENIED
        if state is PermissionState.GRANTED:
            self.stored_handle = handle
            self.state = state
            if self.on_permission_granted is not None:
                try:
                    await self.on_permission_granted()
                except Exception:
                    logger.exception("Catching up the storage folder failed")
            self._notify()
        return state

    async def pick_directory(self) -> bool:
        """Let the user choose a folder and switch the directory tier to it.

        Returns False, leaving the previous handle untouched, when the
        platform has no folder access, the user cancels, or anything on the
        way fails.
        """
        if not self.detect_capability():
            logger.info("Folder access is not supported; data stays in the embedded store")
            return False

        if self.stored_handle is not None and self.active_handle is None:
            if await self.request_permission() is PermissionState.GRANTED:
                return True

        try:
            handle = self.platform.show_directory_picker()
            state = await asyncio.to_thread(handle.query_permission)
            if state is not PermissionState.GRANTED:
                state = handle.request_permission()
            if state is not PermissionState.GRANTED:
                logger.warning("Access to the chosen folder %s was not granted", handle.name)
                return False
            await asyncio.to_thread(self.metadata.put_setting, FOLDER_HANDLE_SETTING, handle.to_token())
        except Exception as e:
            logger.error("Folder pick failed: %s", e)
            return False

        self.stored_handle = handle
        self.state = PermissionState.GRANTED
        logger.info("Storage folder set to %s", handle.name)

        if self.on_directory_selected is not None:
            try:
                await self.on_directory_selected()
            except Exception:
                logger.exception("Syncing into the new folder failed")
        self._notify()
        return True

    def _notify(self) -> None:
        if self.on_storage_change is None:
            return
        try:
            result = self.on_storage_change()
        except Exception:
            logger.exception("on_storage_change callback failed")
            return
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._callbacks.add(future)
            future.add_done_callback(self._callback_done)

    def _callback_done(self, future: asyncio.Future) -> None:
        self._callbacks.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("on_storage_change callback failed", exc_info=exc)
