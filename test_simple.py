"""
upass - Test Suite

Run with: python test_simple.py   (or: pytest)

Covers the store's data model and history, name search, TOTP codes and the
sealed vault file:
- Load/dump round trip and rejection of malformed data
- Snapshot history ordering and the per-setter snapshot policy
- Protected keys and read-only snapshot views
- RFC 6238 code vectors
- Wrong password / tampering on the sealed file
"""

import base64
import hashlib
import hmac
import json
import os
import struct
import tempfile

from upass import otp, search
from upass.crypto import seal, unseal
from upass.entry import ZERO_TIME
from upass.errors import (
    FormatError,
    NotFoundError,
    ProtectedKeyError,
    ReadOnlyEntryError,
    SealError,
    SnapshotFormatError,
    SnapshotRangeError,
    TwoFactorFormatError,
)
from upass.store import Store
from upass.vault import load_vault, save_vault

# Small scrypt cost so the sealing tests run quickly
FAST_KDF = {"n": 2**10, "r": 8, "p": 1}


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now=1_600_000_000):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds=1):
        self.now += seconds


def reference_totp(secret_b32, t, digits=6, period=30):
    """Straight RFC 4226/6238 implementation to check codes against."""
    key = base64.b32decode(secret_b32)
    counter = struct.pack(">Q", int(t) // period)
    digest = hmac.new(key, counter, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF
    return str(code % 10 ** digits).zfill(digits)


SAMPLE = {
    "work/email": {
        "user": "alice@example.com",
        "pass": "hunter2",
        "notes": ["recovery codes in the safe"],
        "labels": ["work", "mail"],
        "updated": 1310669017,
        "pin": "1234",
        "snapshots": [
            {"user": "alice@old.example.com", "pass": "hunter1", "updated": 1310669000},
        ],
    },
    "home/bank": {"user": "alice", "pass": "s3cret"},
}


# =============================================================================
# Loading and serialization
# =============================================================================

def test_load_and_accessors():
    """Test reading every kind of field from a loaded store."""
    print("Testing Load + Accessors...")

    store = Store.load(json.dumps(SAMPLE).encode("utf-8"))
    assert len(store) == 2
    assert store.names() == ["home/bank", "work/email"]

    entry = store.get("work/email")
    assert entry.user() == "alice@example.com"
    assert entry.password() == "hunter2"
    assert entry.notes() == ["recovery codes in the safe"]
    assert entry.labels() == ["work", "mail"]
    assert entry.updated().timestamp() == 1310669017
    assert entry.get("PIN") == "1234"
    assert entry.n_snapshots() == 1
    assert entry.two_factor() == ""

    bank = store.get("home/bank")
    assert bank.notes() is None
    assert bank.labels() is None
    assert bank.n_snapshots() == 0
    assert bank.updated() == ZERO_TIME
    assert bank.get("missing") == ""
    print("  [OK] Accessors work")


def test_load_rejects_malformed():
    """Test that bad shapes fail at load time, not on access."""
    print("Testing Malformed Input...")

    bad_inputs = [
        b"not json",
        b"[]",
        b'{"a": "not an object"}',
        b'{"": {"user": "x"}}',
        b'{"a": {"user": true}}',
        b'{"a": {"user": null}}',
        b'{"a": {"user": {"nested": "object"}}}',
        b'{"a": {"notes": ["ok", 3]}}',
        b'{"a": {"user": "x", "USER": "y"}}',
    ]
    for data in bad_inputs:
        try:
            Store.load(data)
            assert False, f"Should reject {data!r}"
        except FormatError:
            pass
    print("  [OK] Malformed entries rejected")

    bad_history = [
        b'{"a": {"snapshots": "nope"}}',
        b'{"a": {"snapshots": ["nope"]}}',
        b'{"a": {"snapshots": [{"snapshots": []}]}}',
        b'{"a": {"snapshots": [{"user": false}]}}',
    ]
    for data in bad_history:
        try:
            Store.load(data)
            assert False, f"Should reject {data!r}"
        except SnapshotFormatError:
            pass
    print("  [OK] Corrupted history rejected")


def test_tolerant_fields():
    """Test the documented tolerant defaults and wrong-kind errors."""
    print("Testing Tolerant Fields...")

    store = Store.load(b'{"a": {"updated": 1310669017.9}, "b": {"updated": "yesterday", "notes": "x"}}')
    assert store.get("a").updated().timestamp() == 1310669017, "Floats are truncated"
    assert store.get("b").updated() == ZERO_TIME, "Wrong kind falls back to zero time"

    try:
        store.get("b").notes()
        assert False, "Notes stored as text should be a format error"
    except FormatError:
        pass
    print("  [OK] Float timestamps, zero time and wrong kinds handled")


def test_round_trip():
    """Test that dump then load reproduces the same store."""
    print("Testing Round Trip...")

    clock = FakeClock()
    store = Store.load(json.dumps(SAMPLE), clock=clock)
    store.set("work/email", "pass", "new")
    store.set_two_factor("work/email", "JBSWY3DPEHPK3PXP")
    store.set_labels("home/bank", ["money"])

    data = store.dumps()
    again = Store.load(data, clock=clock)
    assert again == store
    assert again.dumps() == data, "Serialization should be canonical"
    assert again.get("work/email").get("pin") == "1234"
    assert again.get("work/email").n_snapshots() == 3
    print("  [OK] Round trip preserves every field")


# =============================================================================
# Search
# =============================================================================

def test_fuzzy_match():
    assert search.fuzzy_match("eml", "Email")
    assert search.fuzzy_match("", "anything")
    assert not search.fuzzy_match("lme", "email")
    assert not search.fuzzy_match("emails", "email")


def test_find():
    """Test hierarchical fuzzy search over names."""
    print("Testing Find...")

    store = Store.load(b'{"abcx/cdy": {}, "abcx": {}, "zz/cdy": {}, "work/email": {}}')
    assert store.find("ab/cd") == {"abcx/cdy"}
    assert store.find("AB/CD") == {"abcx/cdy"}, "Matching is case-insensitive"
    assert store.find("ab") == {"abcx"}, "Segment counts must be equal"
    assert store.find("/cd") == {"abcx/cdy", "zz/cdy"}
    assert store.find("x/y/z") == set()
    print("  [OK] Find works")


# =============================================================================
# History
# =============================================================================

def test_history_ordering():
    """Test that each set() records the state before it."""
    print("Testing Snapshot History...")

    clock = FakeClock()
    store = Store(clock=clock)
    store.set("site", "user", "a")
    clock.advance()
    store.set("site", "user", "b")

    entry = store.get("site")
    assert entry.user() == "b"
    assert entry.n_snapshots() == 2

    latest = entry.snapshot(0)
    assert latest.user() == "a", "Snapshot 0 holds the state before the last edit"
    assert latest.name == "site:snap1"
    assert latest.n_snapshots() == 0, "Snapshots never contain history"
    assert latest.updated().timestamp() == clock.now - 1

    first = entry.snapshot(1)
    assert first.user() == ""
    assert first.keys() == []
    print("  [OK] History is ordered newest-first by index")


def test_snapshot_range():
    """Test out-of-range snapshot indexes."""
    print("Testing Snapshot Range...")

    store = Store(clock=FakeClock())
    store.set("site", "user", "a")
    entry = store.get("site")

    for index in (entry.n_snapshots(), -1, 99):
        try:
            entry.snapshot(index)
            assert False, f"Index {index} should be out of range"
        except SnapshotRangeError:
            pass

    store.set_labels("plain", ["x"])
    try:
        store.get("plain").snapshot(0)
        assert False, "No snapshots should be a range error"
    except SnapshotRangeError:
        pass
    print("  [OK] Range errors raised")


def test_snapshot_is_read_only():
    store = Store(clock=FakeClock())
    store.set("site", "user", "a")
    store.set("site", "user", "b")
    snap = store.get("site").snapshot(0)

    try:
        snap.set("user", "c")
        assert False, "Snapshot views must not be writable"
    except ReadOnlyEntryError:
        pass
    assert store.get("site").snapshot(0).user() == "a"


def test_protected_keys():
    """Test that set() refuses fields with dedicated setters."""
    print("Testing Protected Keys...")

    store = Store(clock=FakeClock())
    store.set("site", "user", "a")
    before = store.get("site").to_json()

    for key in ("notes", "NOTES", "labels", "twofactor", "updated", "snapshots"):
        try:
            store.set("site", key, "x")
            assert False, f"{key} should be protected"
        except ProtectedKeyError:
            pass

    assert store.get("site").to_json() == before, "Rejected writes change nothing"
    print("  [OK] Protected keys rejected")


def test_snapshot_policy():
    """Test which setters record history."""
    print("Testing Snapshot Policy...")

    clock = FakeClock()
    store = Store(clock=clock)
    store.set("site", "user", "a")
    entry = store.get("site")
    updated = entry.updated()
    count = entry.n_snapshots()

    clock.advance()
    store.set_labels("site", ["personal"])
    assert entry.updated() > updated, "Labels touch updated"
    assert entry.n_snapshots() == count, "Labels are not history"

    clock.advance()
    updated = entry.updated()
    store.set_notes("site", ["one", "two"])
    assert entry.updated() > updated
    assert entry.n_snapshots() == count, "Notes are not snapshotted"
    assert entry.notes() == ["one", "two"]

    clock.advance()
    updated = entry.updated()
    store.set("site", "pass", "p")
    assert entry.updated() > updated
    assert entry.n_snapshots() == count + 1
    assert entry.snapshot(0).labels() == ["personal"]
    print("  [OK] set/set_two_factor snapshot, set_notes/set_labels do not")


def test_updated_follows_clock():
    """Test that every setter writes the clock's time, even over a future stamp."""
    print("Testing Updated Timestamp...")

    clock = FakeClock(1_600_000_000)
    store = Store.load(b'{"a": {"user": "x", "updated": 4102444800}}', clock=clock)
    assert store.get("a").updated().year == 2100

    store.set_labels("a", ["k"])
    assert store.get("a").updated().timestamp() == 1_600_000_000

    clock.advance(-100)
    store.set("a", "user", "y")
    assert store.get("a").updated().timestamp() == 1_600_000_000 - 100
    print("  [OK] Setters reset updated to the current time")


def test_list_setters_reject_bare_string():
    """Test that a single string is not split into characters."""
    print("Testing List Setters...")

    store = Store(clock=FakeClock())
    store.set("a", "user", "x")
    before = store.get("a").to_json()

    for setter in (store.set_notes, store.set_labels):
        try:
            setter("a", "hello")
            assert False, "A bare string should be rejected"
        except TypeError:
            pass

    assert store.get("a").to_json() == before, "Rejected writes change nothing"

    try:
        store.set_notes("fresh", "hello")
        assert False, "A bare string should be rejected"
    except TypeError:
        pass
    assert "fresh" not in store
    print("  [OK] Bare strings rejected")


def test_get_and_delete():
    """Test missing entries and deletion."""
    print("Testing Get/Delete...")

    store = Store(clock=FakeClock())
    try:
        store.get("nope")
        assert False, "Missing entry should raise"
    except NotFoundError:
        pass

    store.set("site", "user", "a")
    assert "site" in store
    store.delete("site")
    assert "site" not in store

    try:
        store.delete("site")
        assert False, "Deleting twice should raise"
    except NotFoundError:
        pass

    try:
        store.set("", "user", "a")
        assert False, "Empty names are not allowed"
    except FormatError:
        pass
    print("  [OK] Get/delete work")


# =============================================================================
# Two factor
# =============================================================================

def test_totp_rfc_vectors():
    """Test against RFC 6238 appendix B (SHA1, truncated to 6 digits)."""
    print("Testing TOTP Vectors...")

    key = otp.parse_key("otpauth://totp/test?secret=GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ")
    assert otp.generate_code(key, 59) == "287082"
    assert otp.generate_code(key, 1111111109) == "081804"
    assert otp.generate_code(key, 1111111111) == "050471"
    assert otp.generate_code(key, 1234567890) == "005924"
    assert otp.generate_code(key, 2000000000) == "279037"
    print("  [OK] RFC 6238 vectors match")


def test_two_factor_code():
    """Test codes derived from a stored bare secret."""
    print("Testing Two Factor...")

    clock = FakeClock(1111111109)
    store = Store(clock=clock)
    store.set_two_factor("work/email", "JBSWY3DPEHPK3PXP")
    entry = store.get("work/email")

    assert entry.get("twofactor") == "otpauth://totp/upass:work%2Femail?secret=JBSWY3DPEHPK3PXP"
    assert entry.two_factor() == reference_totp("JBSWY3DPEHPK3PXP", 1111111109)
    assert entry.two_factor(at=59) == reference_totp("JBSWY3DPEHPK3PXP", 59)
    assert entry.n_snapshots() == 1, "set_two_factor records a snapshot"

    # Lower case and missing padding are accepted
    store.set_two_factor("other", "jbswy3dpehpk3pxp")
    assert store.get("other").two_factor() == entry.two_factor()
    print("  [OK] Codes derived from stored seeds")


def test_two_factor_uri():
    store = Store(clock=FakeClock(1111111109), app_tag="myapp")
    uri = "otpauth://totp/Example:alice@example.com?secret=JBSWY3DPEHPK3PXP&issuer=Example"
    store.set_two_factor("site", uri)
    assert store.get("site").get("twofactor") == uri, "URIs are stored verbatim"

    store.set_two_factor("bare", "JBSWY3DPEHPK3PXP")
    assert store.get("bare").get("twofactor").startswith("otpauth://totp/myapp:bare?")

    key = otp.parse_key(uri)
    assert key.issuer == "Example"
    assert key.label == "Example:alice@example.com"


def test_two_factor_rejected():
    """Test that bad seeds never reach the store."""
    print("Testing Two Factor Validation...")

    store = Store(clock=FakeClock())
    store.set("site", "user", "a")
    before = store.get("site").to_json()

    bad_seeds = [
        "otpauth://hotp/x?secret=JBSWY3DPEHPK3PXP&counter=0",
        "otpauth://totp/x?issuer=nosecret",
        "not base32 at all!",
        "",
    ]
    for seed in bad_seeds:
        try:
            store.set_two_factor("site", seed)
            assert False, f"Should reject {seed!r}"
        except TwoFactorFormatError:
            pass

    assert store.get("site").to_json() == before, "Failed set_two_factor changes nothing"

    try:
        store.set_two_factor("new", "otpauth://hotp/x?secret=JBSWY3DPEHPK3PXP")
        assert False, "hotp should be rejected"
    except TwoFactorFormatError:
        pass
    assert "new" not in store, "Rejected write must not create an entry"

    corrupt = Store.load(b'{"a": {"twofactor": "otpauth://hotp/a?secret=JBSWY3DPEHPK3PXP"}}')
    try:
        corrupt.get("a").two_factor()
        assert False, "Stored hotp seed should fail on read"
    except TwoFactorFormatError:
        pass
    print("  [OK] Invalid seeds rejected")


# =============================================================================
# Sealed vault
# =============================================================================

def test_seal():
    """Test encryption of the serialized store."""
    print("Testing Seal/Unseal...")

    plaintext = Store.load(json.dumps(SAMPLE)).dumps()
    sealed = seal(plaintext, "master", **FAST_KDF)
    assert plaintext not in sealed
    assert unseal(sealed, "master") == plaintext
    print("  [OK] Seal/unseal works")

    try:
        unseal(sealed, "wrong")
        assert False, "Wrong password should fail"
    except SealError:
        print("  [OK] Wrong password detected")

    doc = json.loads(sealed)
    ciphertext = bytearray(base64.b64decode(doc["ciphertext"]))
    ciphertext[0] ^= 1
    doc["ciphertext"] = base64.b64encode(bytes(ciphertext)).decode("ascii")
    try:
        unseal(json.dumps(doc).encode("utf-8"), "master")
        assert False, "Tampered ciphertext should fail"
    except SealError:
        print("  [OK] Ciphertext tampering detected")

    doc = json.loads(sealed)
    doc["kdf_params"]["dkLen"] = 16
    try:
        unseal(json.dumps(doc).encode("utf-8"), "master")
        assert False, "Tampered header should fail"
    except SealError:
        print("  [OK] Header tampering detected (AD binding)")

    try:
        unseal(b"garbage", "master")
        assert False, "Garbage should fail"
    except SealError:
        pass


def test_vault_file():
    """Test saving and loading a sealed vault on disk."""
    print("Testing Vault File...")

    clock = FakeClock()
    store = Store(clock=clock)
    store.set("work/email", "user", "alice")
    store.set_notes("work/email", ["note"])

    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "nested", "vault.json")
        save_vault(path, store, "master", **FAST_KDF)
        assert os.path.exists(path)
        assert not os.path.exists(path + ".tmp")

        loaded = load_vault(path, "master", clock=clock)
        assert loaded == store
        assert loaded.get("work/email").notes() == ["note"]

        try:
            load_vault(path, "wrong")
            assert False, "Wrong password should fail"
        except SealError:
            pass

        # A directory in the way makes os.replace fail after the tmp file is written
        blocked = os.path.join(tmp, "blocked")
        os.makedirs(os.path.join(blocked, "child"))
        try:
            save_vault(blocked, store, "master", **FAST_KDF)
            assert False, "Replacing a directory should fail"
        except OSError:
            pass
        assert not os.path.exists(blocked + ".tmp"), "Failed save must not leave the tmp file"
    print("  [OK] Vault file round trip works")


def run_all_tests():
    """Run all tests."""
    print("=" * 70)
    print("upass - Test Suite")
    print("=" * 70)
    print()

    tests = [
        test_load_and_accessors,
        test_load_rejects_malformed,
        test_tolerant_fields,
        test_round_trip,
        test_fuzzy_match,
        test_find,
        test_history_ordering,
        test_snapshot_range,
        test_snapshot_is_read_only,
        test_protected_keys,
        test_snapshot_policy,
        test_updated_follows_clock,
        test_list_setters_reject_bare_string,
        test_get_and_delete,
        test_totp_rfc_vectors,
        test_two_factor_code,
        test_two_factor_uri,
        test_two_factor_rejected,
        test_seal,
        test_vault_file,
    ]

    failed = []

    for test in tests:
        try:
            test()
            print()
        except Exception as e:
            print(f"  [FAIL] TEST FAILED: {e}")
            failed.append((test.__name__, e))
            print()

    print("=" * 70)
    if not failed:
        print("[OK] ALL TESTS PASSED!")
    else:
        print(f"[FAIL] {len(failed)} TESTS FAILED:")
        for name, error in failed:
            print(f"  - {name}: {error}")
    print("=" * 70)

    return len(failed) == 0


if __name__ == "__main__":
    import sys
    success = run_all_tests()
    sys.exit(0 if success else 1)
