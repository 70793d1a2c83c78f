"""
upass - Errors

Every failure the store can report is a subclass of StoreError, so callers
(the CLI, the sync job) can catch one type and render the message.

None of these are transient: they all come from validating data, so
retrying the same call gives the same result.
"""


class StoreError(Exception):
    """Base class for all store errors."""


class FormatError(StoreError):
    """Serialized data or a stored field has the wrong shape."""


class NotFoundError(StoreError):
    """No entry with the requested name."""


class ProtectedKeyError(StoreError):
    """A field that only a dedicated setter may write was passed to set()."""


class TwoFactorFormatError(StoreError):
    """A one-time-code seed or URI failed to parse, or is not a TOTP seed."""


class SnapshotRangeError(StoreError):
    """Snapshot index outside the entry's history."""


class SnapshotFormatError(FormatError):
    """The snapshot history list, or one of its elements, is corrupted."""


class ReadOnlyEntryError(StoreError):
    """Mutation attempted on a historical snapshot view."""


class SealError(StoreError):
    """A sealed vault could not be opened (wrong password or tampering)."""
