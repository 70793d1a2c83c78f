"""
upass - Cryptography Module

Seals the serialized store for storage on disk. The store itself never sees
keys or ciphertext; it only hands plaintext bytes to seal() and receives them
back from unseal().

Security Architecture:
    1. Master Password -> scrypt (random salt) -> Vault Key (32 bytes)
    2. Store JSON -> AES-256-GCM (random nonce) -> ciphertext
    3. Format version, KDF parameters and salt are bound as associated data,
       so editing the header of a sealed file makes decryption fail

Sealed file layout (UTF-8 JSON, binary fields base64):
    {"v": 1, "kdf": "scrypt", "kdf_params": {...}, "salt": ..., "nonce": ..., "ciphertext": ...}
"""

import base64
import binascii
import json
import logging
import os
from typing import Dict, Tuple

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .errors import SealError

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

FORMAT_VERSION = 1
VAULT_KEY_SIZE = 32      # 256-bit key
NONCE_SIZE = 12          # 96-bit nonce for AES-GCM
SALT_SIZE = 16

# scrypt parameters (tuned for ~250ms on modern CPU)
# N = CPU/memory cost (power of 2), r = block size, p = parallelization
SCRYPT_N = 2**17         # 131072 - uses ~128 MB RAM with r=8
SCRYPT_R = 8
SCRYPT_P = 1

# Refuse to honour absurd parameters read from a (possibly hostile) file
MAX_SCRYPT_N = 2**20


# =============================================================================
# Key Derivation
# =============================================================================

def derive_vault_key(password: str, salt: bytes, n: int = SCRYPT_N, r: int = SCRYPT_R, p: int = SCRYPT_P) -> bytes:
    """
    Derive the vault key from the master password using scrypt.

    Args:
        password: Master password
        salt: Random salt stored alongside the ciphertext (not secret)

    Returns:
        32-byte vault key
    """
    kdf = Scrypt(salt=salt, length=VAULT_KEY_SIZE, n=n, r=r, p=p)
    return kdf.derive(password.encode('utf-8'))


# =============================================================================
# Canonical Associated Data
# =============================================================================

def canonical_ad(ad: dict) -> bytes:
    """
    Convert associated data to canonical JSON bytes: sorted keys, compact,
    UTF-8. The same dict always produces the same bytes.
    """
    json_str = json.dumps(ad, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return json_str.encode('utf-8')


# =============================================================================
# Encryption (AES-256-GCM)
# =============================================================================

def encrypt(key: bytes, plaintext: bytes, associated_data: dict) -> Tuple[bytes, bytes]:
    """
    Encrypt with AES-256-GCM.

    Returns:
        (nonce, ciphertext); ciphertext includes the 16-byte tag
    """
    # Never reuse a nonce with the same key
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, canonical_ad(associated_data))
    return nonce, ciphertext


def decrypt(key: bytes, nonce: bytes, ciphertext: bytes, associated_data: dict) -> bytes:
    """
    Decrypt AES-256-GCM ciphertext.

    Raises:
        cryptography.exceptions.InvalidTag: wrong key, tampered ciphertext
            or associated data mismatch
    """
    return AESGCM(key).decrypt(nonce, ciphertext, canonical_ad(associated_data))


# =============================================================================
# Sealing
# =============================================================================

def _header_ad(kdf_params: Dict[str, int], salt_b64: str) -> dict:
    return {
        "ctx": "upass_store",
        "v": FORMAT_VERSION,
        "kdf": "scrypt",
        "kdf_params": kdf_params,
        "salt": salt_b64,
        "aead": "aes256gcm",
    }


def seal(plaintext: bytes, password: str, n: int = SCRYPT_N, r: int = SCRYPT_R, p: int = SCRYPT_P) -> bytes:
    """
    Encrypt serialized store bytes under a master password.

    A fresh salt and nonce are generated on every call, so sealing the same
    store twice gives different output.

    Returns:
        Sealed bytes, safe to write to disk
    """
    salt = os.urandom(SALT_SIZE)
    salt_b64 = base64.b64encode(salt).decode('ascii')
    kdf_params = {"N": n, "r": r, "p": p, "dkLen": VAULT_KEY_SIZE}

    key = derive_vault_key(password, salt, n, r, p)
    nonce, ciphertext = encrypt(key, plaintext, _header_ad(kdf_params, salt_b64))

    sealed = {
        "v": FORMAT_VERSION,
        "kdf": "scrypt",
        "kdf_params": kdf_params,
        "salt": salt_b64,
        "nonce": base64.b64encode(nonce).decode('ascii'),
        "ciphertext": base64.b64encode(ciphertext).decode('ascii'),
    }
    logger.info("Sealed %d bytes of store data", len(plaintext))
    return canonical_ad(sealed)


def unseal(sealed: bytes, password: str) -> bytes:
    """
    Decrypt bytes produced by seal().

    Raises:
        SealError: malformed file, unsupported version, wrong password or
            tampering (GCM cannot tell the last two apart)
    """
    try:
        doc = json.loads(sealed)
    except (ValueError, UnicodeDecodeError) as e:
        raise SealError(f"sealed vault is not valid JSON: {e}") from e

    if not isinstance(doc, dict):
        raise SealError("sealed vault must be a JSON object")
    if doc.get("v") != FORMAT_VERSION or doc.get("kdf") != "scrypt":
        raise SealError(f"unsupported sealed vault version {doc.get('v')!r} / kdf {doc.get('kdf')!r}")

    try:
        params = doc["kdf_params"]
        n, r, p = params["N"], params["r"], params["p"]
        salt_b64 = doc["salt"]
        salt = base64.b64decode(salt_b64, validate=True)
        nonce = base64.b64decode(doc["nonce"], validate=True)
        ciphertext = base64.b64decode(doc["ciphertext"], validate=True)
    except (KeyError, TypeError, binascii.Error) as e:
        raise SealError(f"sealed vault header is incomplete: {e}") from e

    for value in (n, r, p):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise SealError("sealed vault has invalid scrypt parameters")
    if n > MAX_SCRYPT_N:
        raise SealError(f"sealed vault asks for scrypt N={n}, above the limit of {MAX_SCRYPT_N}")

    try:
        key = derive_vault_key(password, salt, n, r, p)
        plaintext = decrypt(key, nonce, ciphertext, _header_ad(params, salt_b64))
    except InvalidTag as e:
        raise SealError("wrong master password or vault has been tampered with") from e
    except ValueError as e:
        # Scrypt rejects N that is not a power of two; AESGCM rejects bad nonces
        raise SealError(f"sealed vault parameters are invalid: {e}") from e

    logger.info("Unsealed %d bytes of store data", len(plaintext))
    return plaintext
