"""Error taxonomy for the storage subsystem.

Only `QuotaExceeded` is meant to reach the end user. The others are handled
inside the tiers: `NotFound` steers the tiered lookup, `CorruptData` and
`StorageIOError` make a single tier operation count as failed, and
`PermissionDenied` sends that operation to the fallback store.
"""


class StorageError(Exception):
    """Base class for storage failures."""


class CapabilityUnavailable(StorageError):
    """The platform has no directory access at all."""


class PermissionDenied(StorageError):
    """Directory access was declined or revoked."""


class PickerCancelled(StorageError):
    """The user closed the folder picker without choosing a folder."""


class NotFound(StorageError, KeyError):
    """The requested key (or file form of a key) does not exist."""


class CorruptData(StorageError, ValueError):
    """Stored bytes could not be decompressed or parsed."""


class QuotaExceeded(StorageError):
    """A store ran out of space."""


class StorageIOError(StorageError):
    """Any other I/O failure in a single tier."""
