"""
upass - Personal Credential Store

An in-memory store of named secret entries with full edit history, fuzzy
hierarchical name search and TOTP code generation.

Components:
- values.py: Tagged field values and snapshots
- entry.py: One entry; accessors, setters and the snapshot history
- store.py: All entries; load/dump, find, get, set
- search.py: Segment-wise fuzzy name matching
- otp.py: Two-factor seed validation and TOTP codes
- crypto.py / vault.py: Sealed (encrypted) vault file on disk

Usage:
    from upass import Store

    store = Store.load(data)
    store.set("work/email", "user", "alice@example.com")
    store.set_two_factor("work/email", "JBSWY3DPEHPK3PXP")
    print(store.get("work/email").two_factor())
"""

from .entry import Entry
from .errors import (
    FormatError,
    NotFoundError,
    ProtectedKeyError,
    ReadOnlyEntryError,
    SealError,
    SnapshotFormatError,
    SnapshotRangeError,
    StoreError,
    TwoFactorFormatError,
)
from .store import Store
from .values import Snapshot, Value

__version__ = "0.1.0"

__all__ = [
    "Entry",
    "FormatError",
    "NotFoundError",
    "ProtectedKeyError",
    "ReadOnlyEntryError",
    "SealError",
    "Snapshot",
    "SnapshotFormatError",
    "SnapshotRangeError",
    "Store",
    "StoreError",
    "TwoFactorFormatError",
    "Value",
]
