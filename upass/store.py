"""
upass - Store

The whole password file, decrypted: a JSON object mapping entry names to
entry objects.

    {
        "work/email": {
            "user": "alice@example.com",
            "pass": "hunter2",
            "twofactor": "otpauth://totp/upass:work%2Femail?secret=JBSWY3DPEHPK3PXP",
            "notes": ["recovery codes in the safe"],
            "labels": ["work"],
            "updated": 1310669017,
            "snapshots": [{"user": "alice@old.example.com", "updated": 1310669000}],
            "pin": "1234"
        }
    }

Any extra key ("pin" above) is stored as plain text. Every mutation must go
through the setters here or on Entry, or "updated" and "snapshots" will not be
maintained.

The store has no locking. Callers that share one across threads must
serialize access themselves.
"""

import json
import logging
import time
from typing import Callable, Dict, Iterator, List, Optional, Set, Union

from . import otp, search
from .entry import Clock, Entry
from .errors import FormatError, NotFoundError
from .values import Value, decode_fields, encode_fields

logger = logging.getLogger(__name__)


class Store:
    """
    In-memory collection of entries, keyed by name.

    Usage:
        store = Store.load(plaintext_bytes)
        names = store.find("w/em")          # {"work/email"}
        entry = store.get("work/email")
        store.set("work/email", "pass", "new password")
        plaintext_bytes = store.dumps()
    """

    def __init__(
        self,
        entries: Optional[Dict[str, Dict[str, Value]]] = None,
        clock: Clock = time.time,
        app_tag: str = otp.APP_TAG,
    ):
        """
        Args:
            entries: Decoded entries (name -> field mapping); empty store if None
            clock: Returns current Unix time; used for "updated" and TOTP codes
            app_tag: Label prefix for TOTP URIs built from bare secrets
        """
        self._entries: Dict[str, Dict[str, Value]] = entries if entries is not None else {}
        self.clock = clock
        self.app_tag = app_tag

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    @classmethod
    def load(cls, data: Union[bytes, str], clock: Clock = time.time, app_tag: str = otp.APP_TAG) -> "Store":
        """
        Decode the JSON form of a store.

        Every entry is fully decoded here, so a malformed entry fails the
        load instead of surfacing later on access.

        Raises:
            FormatError: not JSON, not an object of objects, or an entry
                holds a value of an unsupported shape
        """
        try:
            raw = json.loads(data)
        except (ValueError, UnicodeDecodeError) as e:
            raise FormatError(f"store is not valid JSON: {e}") from e

        if not isinstance(raw, dict):
            raise FormatError(f"store must be a JSON object, got {type(raw).__name__}")

        entries = {}
        for name, obj in raw.items():
            if not name:
                raise FormatError("store contains an entry with an empty name")
            if not isinstance(obj, dict):
                raise FormatError(f"{name} entry was not in the correct format")
            entries[name] = decode_fields(obj, name)

        logger.info("Loaded store with %d entries", len(entries))
        return cls(entries, clock=clock, app_tag=app_tag)

    def to_dict(self) -> Dict[str, dict]:
        return {name: encode_fields(fields) for name, fields in self._entries.items()}

    def dumps(self) -> bytes:
        """
        Serialize to UTF-8 JSON. Output is canonical (sorted keys, compact)
        so the same store always produces the same bytes.
        """
        text = json.dumps(self.to_dict(), separators=(",", ":"), sort_keys=True, ensure_ascii=False)
        logger.info("Serialized store with %d entries", len(self._entries))
        return text.encode("utf-8")

    # =========================================================================
    # QUERIES
    # =========================================================================

    def find(self, query: str) -> Set[str]:
        """
        Fuzzy search entry names, segment by segment on "/".

        "ab/cd" matches "abcx/cdy" but not "abcx" or "zz/cdy". The result is
        a set; most other operations want one exact name from it.
        """
        return search.find(query, self._entries)

    def get(self, name: str) -> Entry:
        """
        Live view of an entry. Writes through the view modify the store.

        Raises:
            NotFoundError: no entry called name
            FormatError: stored entry is not a field mapping
        """
        fields = self._entries.get(name)
        if fields is None:
            raise NotFoundError(f"{name} entry not found")
        if not isinstance(fields, dict):
            raise FormatError(f"{name} entry was not in the correct format")
        return self._view(name, fields)

    def names(self) -> List[str]:
        return sorted(self._entries)

    def __contains__(self, name) -> bool:
        return name in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self.names())

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other):
        if not isinstance(other, Store):
            return NotImplemented
        return self._entries == other._entries

    # =========================================================================
    # MUTATORS
    # =========================================================================

    def set(self, name: str, key: str, value: str) -> None:
        """
        Set a text field, recording a snapshot first. Creates the entry if
        it does not exist yet.

        Raises:
            ProtectedKeyError: key needs a dedicated setter
        """
        self._write(name, lambda entry: entry.set(key, value))

    def set_two_factor(self, name: str, uri_or_seed: str) -> None:
        """
        Validate and store a TOTP seed, recording a snapshot first.

        Raises:
            TwoFactorFormatError: seed rejected; the store is unchanged
        """
        self._write(name, lambda entry: entry.set_two_factor(uri_or_seed))

    def set_notes(self, name: str, notes: List[str]) -> None:
        """Replace notes. Updates "updated" but records no snapshot."""
        self._write(name, lambda entry: entry.set_notes(notes))

    def set_labels(self, name: str, labels: List[str]) -> None:
        """Replace labels. Updates "updated" but records no snapshot."""
        self._write(name, lambda entry: entry.set_labels(labels))

    def delete(self, name: str) -> None:
        """
        Remove an entry and its history. Views of it become stale.

        Raises:
            NotFoundError: no entry called name
        """
        if name not in self._entries:
            raise NotFoundError(f"{name} entry not found")
        del self._entries[name]
        logger.debug("Deleted %s", name)

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _view(self, name: str, fields: Dict[str, Value]) -> Entry:
        return Entry(name, fields, clock=self.clock, app_tag=self.app_tag)

    def _write(self, name: str, mutate: Callable[[Entry], None]) -> None:
        """
        Apply mutate to the entry called name, creating it if needed.

        A new entry is only added once mutate succeeds, so a rejected write
        never leaves an empty entry behind.
        """
        if not isinstance(name, str) or not name:
            raise FormatError("entry name must be a non-empty string")

        fields = self._entries.get(name)
        created = fields is None
        if created:
            fields = {}

        mutate(self._view(name, fields))

        if created:
            self._entries[name] = fields
            logger.debug("Created entry %s", name)
