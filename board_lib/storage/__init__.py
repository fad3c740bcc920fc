"""Tiered document storage for the whiteboard application."""

from .codec import compress, decompress
from .directory import EmbeddedOnlyPlatform, LocalDirectoryHandle, LocalPlatform, PermissionState
from .errors import (
    CapabilityUnavailable,
    CorruptData,
    NotFound,
    PermissionDenied,
    QuotaExceeded,
    StorageError,
    StorageIOError,
)
from .keys import KeyKind, KeyRegistry
from .manager import BackendMode, StorageManager
from .metadata_store import MetadataStore
from .portable import create_portable_blob, read_portable_blob

__all__ = [
    "BackendMode",
    "CapabilityUnavailable",
    "CorruptData",
    "EmbeddedOnlyPlatform",
    "KeyKind",
    "KeyRegistry",
    "LocalDirectoryHandle",
    "LocalPlatform",
    "MetadataStore",
    "NotFound",
    "PermissionDenied",
    "PermissionState",
    "QuotaExceeded",
    "StorageError",
    "StorageIOError",
    "StorageManager",
    "compress",
    "create_portable_blob",
    "decompress",
    "read_portable_blob",
]
