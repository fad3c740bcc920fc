"""Tiered key/value store: mirror, directory tier, metadata fallback.

Reads try the directory tier first (when a folder is held and permission is
granted for this call), then the metadata store's fallback table, and keep
the mirror in step with whatever answered. Writes update the mirror
synchronously, then persist in a background task: the directory tier when
usable, and the fallback table every time, so revoking folder access later
never leaves a gap.

A write that reached the fallback table but not the held folder marks the key
unsynced (the mark survives restarts in the `settings` table). Reads of an
unsynced key skip the folder, whose copy is older, until a later write or a
replay after permission returns brings the folder up to date.

There is no per-key write lock. Two overlapping `set` calls for one key are
settled by whichever I/O finishes last.
"""
from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Dict, Mapping, Optional, Set

from .codec import DEFAULT_CHAINS, CodecChain
from .directory import DirectoryHandle
from .errors import NotFound, QuotaExceeded
from .keys import KeyKind, KeyRegistry
from .metadata_store import UNSYNCED_SETTING, MetadataStore
from .mirror import MISSING, Mirror
from .permission import PermissionGate
from .serializer import JSONSerializer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WriteOutcome:
    key: str
    directory: bool
    fallback: bool

    @property
    def persisted(self) -> bool:
        return self.directory or self.fallback


class TieredStore:
    def __init__(
        self,
        gate: PermissionGate,
        metadata: MetadataStore,
        registry: KeyRegistry,
        mirror: Optional[Mirror] = None,
        chains: Optional[Mapping[KeyKind, CodecChain]] = None,
        on_warning: Optional[Callable[[str, Exception], Any]] = None,
    ) -> None:
        self.gate = gate
        self.metadata = metadata
        self.registry = registry
        self.mirror = mirror if mirror is not None else Mirror()
        self.chains: Dict[KeyKind, CodecChain] = dict(chains or DEFAULT_CHAINS)
        self.on_warning = on_warning
        self._json = JSONSerializer()
        self._pending: Dict[str, Set[asyncio.Task]] = {}
        self._unsynced: Dict[str, KeyKind] = {}

    def peek(self, key: str, default: Any = None) -> Any:
        """Synchronous mirror read, for rendering before `get` completes."""
        return self.mirror.get(key, default)

    async def get(self, key: str, default: Any = None, kind: Optional[KeyKind] = None) -> Any:
        """Return the authoritative value for `key`; never raises.

        Falls back to the mirror's value (or `default` when the mirror has
        none) if neither backend holds the key.
        """
        candidate = self.mirror.get(key, MISSING)
        kind = self.registry.kind_of(key, kind)
        await self._wait_pending(key)

        handle = None if key in self._unsynced else await self._directory()
        if handle is not None:
            try:
                value = await self._read_directory(handle, key, kind)
            except NotFound:
                pass
            except Exception as e:
                logger.error("Directory read of %s failed, using fallback: %s", key, e)
            else:
                self._mirror_put(key, value)
                return value

        try:
            value = await asyncio.to_thread(self.metadata.load, key)
        except NotFound:
            pass
        except Exception as e:
            logger.error("Fallback read of %s failed: %s", key, e)
        else:
            self._mirror_put(key, value)
            return value

        return default if candidate is MISSING else candidate

    async def set(self, key: str, value: Any, kind: Optional[KeyKind] = None) -> asyncio.Task:
        """Store `value` under `key`.

        Returns as soon as the mirror holds the new value. The returned task
        finishes the backend writes and resolves to a `WriteOutcome`; it
        never raises. Raises `TypeError` up front for non-JSON values.
        """
        kind = self.registry.kind_of(key, kind)
        text = self._json.dumps(value)
        try:
            self.mirror.set_text(key, text)
        except QuotaExceeded as e:
            # never keep a superseded value
            logger.warning("Mirror update of %s skipped: %s", key, e)
            self.mirror.delete(key)
            self._warn(key, e)
        return self._spawn(key, self._persist(key, text, kind))

    async def remove(self, key: str) -> None:
        """Delete `key` from every tier. Idempotent; never raises."""
        await self._wait_pending(key)
        self.mirror.delete(key)

        handle = await self._directory()
        if handle is not None:
            for filename in self._all_filenames(key):
                try:
                    await asyncio.to_thread(handle.remove_entry, filename)
                except NotFound:
                    pass
                except Exception as e:
                    logger.warning("Could not remove %s from storage folder: %s", filename, e)

        try:
            await asyncio.to_thread(self.metadata.delete, key)
        except Exception as e:
            logger.warning("Could not remove %s from fallback store: %s", key, e)

        if handle is None and self.gate.stored_handle is not None:
            # the held folder may still have the file; keep reads away from it
            await self._mark_unsynced(key, self.registry.kind_of(key))
        else:
            await self._mark_synced(key)

    async def flush(self) -> None:
        """Wait for every background write, including migrations."""
        while True:
            tasks = [t for group in self._pending.values() for t in group if not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def pending(self) -> int:
        return sum(1 for group in self._pending.values() for t in group if not t.done())

    def unsynced(self) -> Dict[str, KeyKind]:
        """Keys whose newest value is missing from the held folder."""
        return dict(self._unsynced)

    async def load_unsynced(self) -> None:
        try:
            stored = await asyncio.to_thread(self.metadata.get_setting, UNSYNCED_SETTING, {})
        except Exception as e:
            logger.error("Could not read unsynced keys: %s", e)
            return
        if not isinstance(stored, dict):
            logger.warning("Ignoring malformed unsynced key list %r", stored)
            return
        for key, kind in stored.items():
            try:
                self._unsynced[key] = KeyKind(kind)
            except ValueError:
                logger.warning("Ignoring unsynced key %s with unknown kind %r", key, kind)

    async def read_fallback(self, key: str) -> Any:
        """Fallback table value for `key`, or `MISSING`."""
        try:
            return await asyncio.to_thread(self.metadata.load, key)
        except NotFound:
            return MISSING

    async def _directory(self) -> Optional[DirectoryHandle]:
        try:
            return await self.gate.current_directory()
        except Exception as e:
            logger.warning("Directory availability check failed: %s", e)
            return None

    async def _read_directory(self, handle: DirectoryHandle, key: str, kind: KeyKind) -> Any:
        chain = self.chains[kind]
        for index, fmt in enumerate(chain):
            try:
                data = await asyncio.to_thread(handle.read_bytes, fmt.filename(key))
            except NotFound:
                continue
            value = fmt.serializer.load(data)
            if index > 0:
                logger.info("Migrating %s from %s to %s", key, fmt.suffix, chain.current.suffix)
                self._spawn(key, self._persist(key, self._json.dumps(value), kind))
            return value
        raise NotFound(key)

    async def _persist(self, key: str, text: str, kind: KeyKind) -> WriteOutcome:
        directory_ok = False
        handle = await self._directory()
        if handle is not None:
            fmt = self.chains[kind].current
            try:
                data = fmt.serializer.dump(self._json.load(text.encode("utf-8")))
                await asyncio.to_thread(handle.write_bytes, fmt.filename(key), data)
                directory_ok = True
            except Exception as e:
                logger.error("Directory write of %s failed, fallback copy kept: %s", key, e)

        fallback_ok = False
        try:
            await asyncio.to_thread(self.metadata.save_text, key, text)
            fallback_ok = True
        except QuotaExceeded as e:
            logger.warning("Fallback store is full, %s not backed up: %s", key, e)
            self._warn(key, e)
        except Exception as e:
            logger.error("Fallback write of %s failed: %s", key, e)
            if not directory_ok:
                self._warn(key, e)

        if directory_ok:
            await self._mark_synced(key)
        elif fallback_ok and self.gate.stored_handle is not None:
            await self._mark_unsynced(key, kind)
        return WriteOutcome(key, directory_ok, fallback_ok)

    async def _mark_unsynced(self, key: str, kind: KeyKind) -> None:
        if self._unsynced.get(key) is kind:
            return
        self._unsynced[key] = kind
        await self._save_unsynced()

    async def _mark_synced(self, key: str) -> None:
        if self._unsynced.pop(key, None) is None:
            return
        await self._save_unsynced()

    async def _save_unsynced(self) -> None:
        snapshot = {key: kind.value for key, kind in self._unsynced.items()}
        try:
            await asyncio.to_thread(self.metadata.put_setting, UNSYNCED_SETTING, snapshot)
        except Exception as e:
            logger.error("Could not record unsynced keys: %s", e)

    def _spawn(self, key: str, coro: Coroutine[Any, Any, WriteOutcome]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        group = self._pending.setdefault(key, set())
        group.add(task)

        def _done(t: asyncio.Task) -> None:
            group.discard(t)
            if not group and self._pending.get(key) is group:
                del self._pending[key]

        task.add_done_callback(_done)
        return task

    async def _wait_pending(self, key: str) -> None:
        group = self._pending.get(key)
        if group:
            await asyncio.gather(*list(group), return_exceptions=True)

    def _mirror_put(self, key: str, value: Any) -> None:
        try:
            self.mirror.set(key, value)
        except QuotaExceeded as e:
            logger.warning("Mirror refresh of %s skipped: %s", key, e)
            self.mirror.delete(key)
        except TypeError as e:
            logger.warning("Value for %s cannot be mirrored: %s", key, e)

    def _all_filenames(self, key: str) -> list[str]:
        names: list[str] = []
        for chain in self.chains.values():
            for name in chain.filenames(key):
                if name not in names:
                    names.append(name)
        return names

    def _warn(self, key: str, exc: Exception) -> None:
        if self.on_warning is None:
            return
        try:
            self.on_warning(key, exc)
        except Exception:
            logger.exception("on_warning callback failed")
