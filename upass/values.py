"""
upass - Value Model

Every field of an entry holds exactly one of four kinds of value:

    text        "user", "pass", "twofactor" and any arbitrary key
    text_list   "notes", "labels"
    integer     "updated" (Unix seconds)
    snapshots   "snapshots" (history, oldest first)

The JSON layer only knows strings, lists, numbers and objects, so decoding
is key aware: "snapshots" must be a list of objects, everything else is a
string, a list of strings or a number. Anything else (booleans, null,
nested objects, mixed lists) is rejected when the store is loaded rather
than when a field happens to be read.
"""

import math
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, NamedTuple

from .errors import FormatError, SnapshotFormatError


# =============================================================================
# Field keys
# =============================================================================

KEY_USER = "user"
KEY_PASS = "pass"
KEY_TWO_FACTOR = "twofactor"
KEY_NOTES = "notes"
KEY_LABELS = "labels"
KEY_UPDATED = "updated"
KEY_SNAPSHOTS = "snapshots"

# Value kinds
TEXT = "text"
TEXT_LIST = "text_list"
INTEGER = "integer"
SNAPSHOTS = "snapshots"

# Kinds a snapshot is allowed to hold
SNAPSHOT_KINDS = frozenset([TEXT, TEXT_LIST, INTEGER])


# =============================================================================
# Value
# =============================================================================

class Value(NamedTuple):
    """
    A tagged field value. Immutable: updating a field replaces its Value,
    so snapshots can share values with the live entry.
    """

    kind: str
    data: Any

    @classmethod
    def text(cls, s: str) -> "Value":
        if not isinstance(s, str):
            raise TypeError(f"text value must be str, got {type(s).__name__}")
        return cls(TEXT, s)

    @classmethod
    def text_list(cls, items: Iterable[str]) -> "Value":
        if isinstance(items, (str, bytes)):
            raise TypeError("text list value must be a list of str, not a single string")
        items = tuple(items)
        for i, s in enumerate(items):
            if not isinstance(s, str):
                raise TypeError(f"text list item {i} must be str, got {type(s).__name__}")
        return cls(TEXT_LIST, items)

    @classmethod
    def integer(cls, n: int) -> "Value":
        if isinstance(n, bool) or not isinstance(n, int):
            raise TypeError(f"integer value must be int, got {type(n).__name__}")
        return cls(INTEGER, n)

    @classmethod
    def snapshots(cls, snaps: Iterable["Snapshot"]) -> "Value":
        return cls(SNAPSHOTS, tuple(snaps))

    def to_json(self) -> Any:
        """Plain JSON-compatible form of this value."""
        if self.kind == TEXT_LIST:
            return list(self.data)
        if self.kind == SNAPSHOTS:
            return [snap.to_json() for snap in self.data]
        return self.data


# =============================================================================
# Snapshot
# =============================================================================

class Snapshot:
    """
    Immutable copy of an entry's fields at one point in time.

    A snapshot never contains history of its own, and only holds text,
    text_list and integer values.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: Mapping[str, Value]):
        for key, value in fields.items():
            if key == KEY_SNAPSHOTS or value.kind not in SNAPSHOT_KINDS:
                raise SnapshotFormatError(
                    f"snapshot field {key!r} has kind {value.kind!r} which cannot be kept in history"
                )
        self._fields = MappingProxyType(dict(fields))

    @property
    def fields(self) -> Mapping[str, Value]:
        return self._fields

    def to_json(self) -> Dict[str, Any]:
        return encode_fields(self._fields)

    def __eq__(self, other):
        if not isinstance(other, Snapshot):
            return NotImplemented
        return dict(self._fields) == dict(other._fields)

    def __repr__(self):
        return f"Snapshot({sorted(self._fields)})"


# =============================================================================
# JSON <-> Value
# =============================================================================

def decode_value(key: str, raw: Any, where: str = "") -> Value:
    """
    Decode one JSON field into a Value.

    Raises:
        FormatError: raw is not one of the supported shapes for key
        SnapshotFormatError: key is "snapshots" and raw is not a list of objects
    """
    label = f"{where}.{key}" if where else key

    if key == KEY_SNAPSHOTS:
        if not isinstance(raw, list):
            raise SnapshotFormatError(f"{label} must be a list of objects")
        snaps = []
        for i, item in enumerate(raw):
            if not isinstance(item, dict):
                raise SnapshotFormatError(f"{label}[{i}] is not an object")
            try:
                snap_fields = decode_fields(item, f"{label}[{i}]")
            except SnapshotFormatError:
                raise
            except FormatError as e:
                raise SnapshotFormatError(str(e)) from e
            snaps.append(Snapshot(snap_fields))
        return Value.snapshots(snaps)

    # bool is an int subclass, check it first
    if isinstance(raw, bool):
        raise FormatError(f"{label} holds a boolean, which is not a supported value")
    if isinstance(raw, str):
        return Value.text(raw)
    if isinstance(raw, int):
        return Value.integer(raw)
    if isinstance(raw, float):
        if not math.isfinite(raw):
            raise FormatError(f"{label} holds a non-finite number")
        return Value.integer(int(raw))
    if isinstance(raw, list):
        for i, item in enumerate(raw):
            if not isinstance(item, str):
                raise FormatError(f"{label}[{i}] is not a string")
        return Value.text_list(raw)

    raise FormatError(f"{label} holds unsupported type {type(raw).__name__}")


def decode_fields(raw: Mapping[str, Any], where: str = "") -> Dict[str, Value]:
    """Decode a JSON object into a field mapping, folding keys to lower case."""
    fields: Dict[str, Value] = {}
    for key, item in raw.items():
        folded = key.lower()
        if folded in fields:
            raise FormatError(f"{where} has duplicate field {folded!r} (keys are case-insensitive)")
        fields[folded] = decode_value(folded, item, where)
    return fields


def encode_fields(fields: Mapping[str, Value]) -> Dict[str, Any]:
    """Inverse of decode_fields()."""
    return {key: value.to_json() for key, value in fields.items()}


def copy_for_snapshot(fields: Mapping[str, Value]) -> Snapshot:
    """
    Build a Snapshot of fields, leaving out the history itself.

    Raises:
        SnapshotFormatError: a non-history field holds a kind that cannot be
            kept in a snapshot. Nothing is dropped silently.
    """
    kept = {}
    for key, value in fields.items():
        if key == KEY_SNAPSHOTS:
            continue
        if value.kind not in SNAPSHOT_KINDS:
            raise SnapshotFormatError(f"field {key!r} of kind {value.kind!r} cannot be snapshotted")
        kept[key] = value
    return Snapshot(kept)
