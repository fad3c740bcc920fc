"""Copy everything known so far into a newly selected storage folder."""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable, List, Mapping

from .keys import KeyKind, KeyRegistry
from .mirror import MISSING
from .tiered_store import TieredStore

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    synced: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class SyncEngine:
    """Bulk-copies meta keys and board contents into the directory tier.

    Meta keys are a fixed list; content keys come from the board index, a
    list of `{"id": ...}` records stored under `index_key`. Each key is copied
    on its own, so one failing write never stops the rest; the fallback store
    still holds a copy of anything that could not be copied.
    """

    def __init__(self, store: TieredStore, registry: KeyRegistry, meta_keys: Iterable[str], index_key: str = "wb_boards") -> None:
        self.store = store
        self.registry = registry
        self.meta_keys = list(meta_keys)
        self.index_key = index_key
        if index_key not in self.meta_keys:
            self.meta_keys.insert(0, index_key)

    async def bulk_sync(self) -> SyncReport:
        report = SyncReport()
        for key in self.meta_keys:
            await self._sync_key(key, KeyKind.META, report, self._current_value)
        for key in await self.content_keys():
            await self._sync_key(key, KeyKind.CONTENT, report, self._current_value)
        logger.info(
            "Folder sync finished: %d copied, %d skipped, %d failed",
            len(report.synced), len(report.skipped), len(report.failed),
        )
        return report

    async def replay(self, keys: Mapping[str, KeyKind]) -> SyncReport:
        """Write keys the folder missed while it was unavailable.

        Values come from the mirror or the fallback table, never from the
        folder itself. A key with no value anywhere was removed meanwhile and
        is removed from the folder too.
        """
        report = SyncReport()
        for key, kind in keys.items():
            await self._sync_key(key, kind, report, self._fallback_value, remove_missing=True)
        if keys:
            logger.info(
                "Folder catch-up finished: %d copied, %d removed, %d failed",
                len(report.synced), len(report.skipped), len(report.failed),
            )
        return report

    async def content_keys(self) -> List[str]:
        """Content keys named by the board index; registers each one."""
        boards = await self._current_value(self.index_key, KeyKind.META)
        if not isinstance(boards, list):
            return []
        keys: List[str] = []
        for board in boards:
            board_id = board.get("id") if isinstance(board, dict) else None
            if board_id is None or board_id == "":
                logger.debug("Skipping board index entry without id: %r", board)
                continue
            key = self.registry.content_key(board_id)
            if key not in keys:
                keys.append(key)
        return keys

    async def _current_value(self, key: str, kind: KeyKind) -> Any:
        value = self.store.mirror.get(key, MISSING)
        if value is MISSING:
            value = await self.store.get(key, MISSING, kind=kind)
        return value

    async def _fallback_value(self, key: str, kind: KeyKind) -> Any:
        value = self.store.mirror.get(key, MISSING)
        if value is MISSING:
            value = await self.store.read_fallback(key)
        return value

    async def _sync_key(
        self,
        key: str,
        kind: KeyKind,
        report: SyncReport,
        read: Callable[[str, KeyKind], Awaitable[Any]],
        remove_missing: bool = False,
    ) -> None:
        try:
            value = await read(key, kind)
            if value is MISSING:
                if remove_missing:
                    await self.store.remove(key)
                report.skipped.append(key)
                return
            outcome = await (await self.store.set(key, value, kind=kind))
        except Exception:
            logger.exception("Copying %s into the storage folder failed", key)
            report.failed.append(key)
            return
        if outcome.directory:
            report.synced.append(key)
        else:
            logger.warning("Copying %s into the storage folder failed; fallback copy kept", key)
            report.failed.append(key)
