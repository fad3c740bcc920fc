"""Directory tier: user-granted writable folders.

A `DirectoryHandle` is the opaque capability for one folder. Holding a handle
says nothing about whether it may be used right now; callers must ask
`query_permission()` first. A `DirectoryPlatform` decides whether folder
access exists at all, shows the folder picker, and rebuilds handles from the
tokens persisted in the metadata store.
"""
from __future__ import annotations
import errno
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Protocol, runtime_checkable

from .errors import CapabilityUnavailable, NotFound, PermissionDenied, PickerCancelled, QuotaExceeded, StorageIOError

logger = logging.getLogger(__name__)

LOCAL_TOKEN_KIND = "local"


class PermissionState(Enum):
    GRANTED = "granted"
    DENIED = "denied"
    UNCHECKED = "unchecked"


@runtime_checkable
class DirectoryHandle(Protocol):
    """Capability to read and write files in one flat directory.

    `read_bytes` raises `NotFound` for a missing file and `PermissionDenied`
    when the OS refuses access. `remove_entry` raises `NotFound` when there is
    nothing to remove.
    """

    name: str

    def query_permission(self) -> PermissionState: ...

    def request_permission(self) -> PermissionState: ...

    def read_bytes(self, filename: str) -> bytes: ...

    def write_bytes(self, filename: str, data: bytes) -> None: ...

    def remove_entry(self, filename: str) -> None: ...

    def list_entries(self) -> Iterable[str]: ...

    def to_token(self) -> dict: ...


def _translate_os_error(exc: OSError, filename: str) -> Exception:
    if isinstance(exc, FileNotFoundError):
        return NotFound(filename)
    if isinstance(exc, PermissionError):
        return PermissionDenied(f"access to {filename!r} denied: {exc}")
    if exc.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
        return QuotaExceeded(f"no space left writing {filename!r}")
    return StorageIOError(f"I/O error on {filename!r}: {exc}")


class LocalDirectoryHandle:
    """Handle for a folder on the local filesystem.

    Files are stored flat under the folder; path separators in names are
    replaced so a key can never escape into a subdirectory. Writes go to a
    temporary file that is fsynced and renamed over the target.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()
        self.name = self.path.name or str(self.path)

    def __repr__(self) -> str:
        return f"LocalDirectoryHandle({str(self.path)!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, LocalDirectoryHandle) and other.path == self.path

    def __hash__(self) -> int:
        return hash(self.path)

    def _path_for(self, filename: str) -> Path:
        safe_name = filename.replace("/", "_").replace("\\", "_")
        return self.path / safe_name

    def query_permission(self) -> PermissionState:
        if not self.path.is_dir():
            return PermissionState.DENIED
        if os.access(self.path, os.R_OK | os.W_OK | os.X_OK):
            return PermissionState.GRANTED
        return PermissionState.DENIED

    def request_permission(self) -> PermissionState:
        # A local folder that was moved away is recreated; there is no OS
        # prompt to show beyond that.
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning("Cannot recreate storage folder %s: %s", self.path, e)
            return PermissionState.DENIED
        return self.query_permission()

    def read_bytes(self, filename: str) -> bytes:
        path = self._path_for(filename)
        try:
            with open(path, "rb") as f:
                data = f.read()
        except OSError as e:
            raise _translate_os_error(e, filename) from e
        logger.debug("Read %s (%d bytes)", path, len(data))
        return data

    def write_bytes(self, filename: str, data: bytes) -> None:
        path = self._path_for(filename)
        tmp = path.with_name(path.name + ".tmp")
        try:
            with open(tmp, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(path)
        except OSError as e:
            try:
                tmp.unlink()
            except OSError:
                pass
            raise _translate_os_error(e, filename) from e

    def remove_entry(self, filename: str) -> None:
        try:
            self._path_for(filename).unlink()
        except OSError as e:
            raise _translate_os_error(e, filename) from e

    def list_entries(self) -> Iterable[str]:
        try:
            return sorted(p.name for p in self.path.iterdir() if p.is_file() and not p.name.endswith(".tmp"))
        except OSError as e:
            raise _translate_os_error(e, str(self.path)) from e

    def to_token(self) -> dict:
        return {"kind": LOCAL_TOKEN_KIND, "path": str(self.path)}


@runtime_checkable
class DirectoryPlatform(Protocol):
    def supports_directory_access(self) -> bool: ...

    def show_directory_picker(self) -> DirectoryHandle: ...

    def handle_from_token(self, token: Any) -> DirectoryHandle: ...


class LocalPlatform:
    """Platform backed by the local filesystem.

    `picker` is supplied by the UI and is called from the user's click; it
    returns the chosen folder, or None when the dialog was dismissed.
    """

    def __init__(self, picker: Optional[Callable[[], Optional[str | Path]]] = None) -> None:
        self.picker = picker

    def supports_directory_access(self) -> bool:
        return True

    def show_directory_picker(self) -> DirectoryHandle:
        if self.picker is None:
            raise PickerCancelled("no folder picker configured")
        chosen = self.picker()
        if chosen is None:
            raise PickerCancelled("folder selection cancelled")
        return LocalDirectoryHandle(chosen)

    def handle_from_token(self, token: Any) -> DirectoryHandle:
        if not isinstance(token, dict) or token.get("kind") != LOCAL_TOKEN_KIND or not token.get("path"):
            raise ValueError(f"unrecognised directory token: {token!r}")
        return LocalDirectoryHandle(token["path"])


class EmbeddedOnlyPlatform:
    """Platform without folder access; everything lives in the metadata store."""

    def supports_directory_access(self) -> bool:
        return False

    def show_directory_picker(self) -> DirectoryHandle:
        raise CapabilityUnavailable("folder access is not supported on this platform")

    def handle_from_token(self, token: Any) -> DirectoryHandle:
        raise CapabilityUnavailable("folder access is not supported on this platform")
