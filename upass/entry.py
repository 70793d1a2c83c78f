"""
upass - Entry

One named record in the store: a mapping of field key -> Value plus the
history of every edit.

History works by full copies. Before a history-worthy edit, every field
except "snapshots" is copied into a Snapshot and appended to the
"snapshots" list, then the edit is applied. Nothing is ever removed from the
list, so the previous state of any field can always be recovered.

Which edits are history-worthy:

    set()             yes
    set_two_factor()  yes
    set_notes()       no
    set_labels()      no  (labels are metadata, not worth a snapshot)

All four refresh "updated".
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from . import otp
from .errors import (
    FormatError,
    ProtectedKeyError,
    ReadOnlyEntryError,
    SnapshotFormatError,
    SnapshotRangeError,
    TwoFactorFormatError,
)
from .values import (
    INTEGER,
    KEY_LABELS,
    KEY_NOTES,
    KEY_PASS,
    KEY_SNAPSHOTS,
    KEY_TWO_FACTOR,
    KEY_UPDATED,
    KEY_USER,
    SNAPSHOTS,
    TEXT,
    TEXT_LIST,
    Snapshot,
    Value,
    copy_for_snapshot,
    encode_fields,
)

logger = logging.getLogger(__name__)

# Keys that set() refuses; each has its own setter (or none at all)
PROTECTED_KEYS = frozenset([
    KEY_TWO_FACTOR, KEY_NOTES, KEY_UPDATED, KEY_LABELS, KEY_SNAPSHOTS,
])

# Does the operation record a snapshot before applying its change?
# TODO: decide whether set_notes should snapshot like set() does; notes
# edits currently leave no history.
SNAPSHOT_POLICY = {
    "set": True,
    "set_two_factor": True,
    "set_notes": False,
    "set_labels": False,
}

# Returned by updated() when no valid timestamp is stored
ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)

Clock = Callable[[], float]


class Entry:
    """
    View of one entry's fields.

    The fields dict is shared with the Store that handed out the view, so
    writes through the view change the store. A view must not be used after
    its entry is deleted from the store.

    Usage:
        entry = store.get("work/email")
        entry.user()           # "alice@example.com"
        entry.two_factor()     # "492039"
        entry.snapshot(0)      # state before the last edit
    """

    def __init__(
        self,
        name: str,
        fields: Dict[str, Value],
        clock: Clock = time.time,
        app_tag: str = otp.APP_TAG,
        read_only: bool = False,
    ):
        self.name = name
        self.fields = fields
        self.read_only = read_only
        self._clock = clock
        self._app_tag = app_tag

    def __repr__(self):
        return f"Entry({self.name!r}, keys={sorted(self.fields)})"

    # =========================================================================
    # ACCESSORS
    # =========================================================================

    def user(self) -> str:
        """Account identifier, "" if not set."""
        return self._text(KEY_USER)

    def password(self) -> str:
        """Secret credential, "" if not set."""
        return self._text(KEY_PASS)

    def get(self, key: str) -> str:
        """Any text field by key (case-insensitive), "" if not set."""
        return self._text(key.lower())

    def keys(self) -> List[str]:
        return sorted(self.fields)

    def two_factor(self, at: Optional[float] = None) -> str:
        """
        Current TOTP code, or "" if no seed is stored.

        Args:
            at: Unix time to compute the code for (default: the store's clock)

        Raises:
            TwoFactorFormatError: the stored seed does not parse
        """
        uri = self._text(KEY_TWO_FACTOR)
        if not uri:
            return ""

        try:
            key = otp.parse_key(uri)
        except TwoFactorFormatError as e:
            raise TwoFactorFormatError(f"two factor key for {self.name}: {e}") from e

        if at is None:
            at = self._clock()
        return otp.generate_code(key, at)

    def notes(self) -> Optional[List[str]]:
        """Notes, None if not set."""
        return self._text_list(KEY_NOTES)

    def labels(self) -> Optional[List[str]]:
        """Labels, None if not set."""
        return self._text_list(KEY_LABELS)

    def updated(self) -> datetime:
        """Time of the last edit (UTC). ZERO_TIME if unset or not an integer."""
        value = self.fields.get(KEY_UPDATED)
        if value is None or value.kind != INTEGER:
            return ZERO_TIME
        try:
            return datetime.fromtimestamp(value.data, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return ZERO_TIME

    def n_snapshots(self) -> int:
        """Number of snapshots recorded, 0 if none."""
        return len(self._snapshots())

    def snapshot(self, index: int) -> "Entry":
        """
        Historical state of the entry, 'index' edits ago (0 = most recent).

        The returned Entry is read-only and named "<name>:snap<position>"
        where position counts from the oldest snapshot.

        Raises:
            SnapshotRangeError: no snapshots, or index out of range
            SnapshotFormatError: history is corrupted
        """
        snaps = self._snapshots()
        if not snaps:
            raise SnapshotRangeError(f"snapshot called on {self.name} which has no snapshots")
        if index < 0 or index >= len(snaps):
            raise SnapshotRangeError(
                f"{self.name} has {len(snaps)} snapshot entries but given index: {index}"
            )

        position = len(snaps) - 1 - index
        snap = snaps[position]
        if not isinstance(snap, Snapshot):
            raise SnapshotFormatError(f"snapshot {position} is stored in the wrong format for: {self.name}")

        return Entry(
            f"{self.name}:snap{position}",
            dict(snap.fields),
            clock=self._clock,
            app_tag=self._app_tag,
            read_only=True,
        )

    def to_json(self) -> dict:
        return encode_fields(self.fields)

    # =========================================================================
    # MUTATORS
    # =========================================================================

    def set(self, key: str, value: str) -> None:
        """
        Set an ordinary text field (user, pass or any custom key).

        Raises:
            ProtectedKeyError: key is twofactor, notes, updated, labels or
                snapshots; use the dedicated setter instead
        """
        key = key.lower()
        if key in PROTECTED_KEYS:
            raise ProtectedKeyError(f"key {key} cannot be set with set()")
        self._apply("set", key, Value.text(value))

    def set_two_factor(self, uri_or_seed: str) -> None:
        """
        Store a TOTP seed, given as an otpauth:// URI or a bare base32 secret.

        The seed is validated first; on failure the entry is left untouched.

        Raises:
            TwoFactorFormatError: seed does not parse or is not TOTP
        """
        uri = otp.validate_seed(uri_or_seed, self.name, self._app_tag)
        self._apply("set_two_factor", KEY_TWO_FACTOR, Value.text(uri))

    def set_notes(self, notes: List[str]) -> None:
        self._apply("set_notes", KEY_NOTES, Value.text_list(notes))

    def set_labels(self, labels: List[str]) -> None:
        self._apply("set_labels", KEY_LABELS, Value.text_list(labels))

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _text(self, key: str) -> str:
        value = self.fields.get(key)
        if value is None:
            return ""
        if value.kind != TEXT:
            raise FormatError(f"{key} for {self.name} is not in the right format")
        return value.data

    def _text_list(self, key: str) -> Optional[List[str]]:
        value = self.fields.get(key)
        if value is None:
            return None
        if value.kind != TEXT_LIST:
            raise FormatError(f"{key} for {self.name} is not in the right format")
        return list(value.data)

    def _snapshots(self) -> tuple:
        value = self.fields.get(KEY_SNAPSHOTS)
        if value is None:
            return ()
        if value.kind != SNAPSHOTS:
            raise SnapshotFormatError(f"snapshots are stored in the wrong format for {self.name}")
        return value.data

    def _apply(self, operation: str, key: str, value: Value) -> None:
        """Run one mutation: snapshot (per SNAPSHOT_POLICY), touch updated, write."""
        if self.read_only:
            raise ReadOnlyEntryError(f"{self.name} is a snapshot and cannot be modified")

        if SNAPSHOT_POLICY[operation]:
            self._add_snapshot()
        self._touch_updated()
        self.fields[key] = value
        logger.debug("%s on %s wrote %s", operation, self.name, key)

    def _add_snapshot(self) -> None:
        """Append a copy of the current fields to the history."""
        history = self._snapshots()
        snap = copy_for_snapshot(self.fields)
        self.fields[KEY_SNAPSHOTS] = Value.snapshots(history + (snap,))
        logger.debug("Recorded snapshot %d for %s", len(history), self.name)

    def _touch_updated(self) -> None:
        """Set updated to the clock's current time."""
        self.fields[KEY_UPDATED] = Value.integer(int(self._clock()))
