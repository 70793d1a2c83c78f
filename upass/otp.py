"""
upass - One-Time Codes (TOTP)

A two-factor seed is stored as a full otpauth:// URI. Users may paste either
the URI from a QR code or just the base32 secret (e.g. JBSWY3DPEHPK3PXP); a
bare secret is wrapped into a URI labelled "<app tag>:<entry name>".

Key URI format:
    otpauth://TYPE/LABEL?secret=SECRET&issuer=ISSUER
    https://github.com/google/google-authenticator/wiki/Key-Uri-Format

Codes follow RFC 6238 with the Google Authenticator defaults: HMAC-SHA1,
30 second time step, 6 digits. The HMAC work is done by the 'cryptography'
library's TOTP primitive.
"""

import base64
import binascii
import logging
from typing import NamedTuple
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.twofactor.totp import TOTP

from .errors import TwoFactorFormatError

logger = logging.getLogger(__name__)


# =============================================================================
# Configuration
# =============================================================================

APP_TAG = "upass"            # label prefix for URIs built from bare secrets
URI_PREFIX = "otpauth://"
TOTP_TYPE = "totp"
TOTP_PERIOD = 30             # seconds per code
TOTP_DIGITS = 6


class TwoFactorKey(NamedTuple):
    """A parsed and validated otpauth:// URI."""

    type: str
    label: str
    issuer: str
    secret: bytes


def normalize_uri(uri_or_seed: str, name: str, app_tag: str = APP_TAG) -> str:
    """
    Turn user input into an otpauth:// URI.

    URIs are returned untouched. Anything else is treated as the raw secret
    and embedded in a synthesized TOTP URI whose label is "app_tag:name".
    """
    if uri_or_seed.startswith(URI_PREFIX):
        return uri_or_seed

    label = quote(f"{app_tag}:{name}", safe=":@")
    query = urlencode({"secret": uri_or_seed})
    return f"{URI_PREFIX}{TOTP_TYPE}/{label}?{query}"


def decode_secret(secret: str) -> bytes:
    """
    Decode a base32 secret the way authenticator apps accept it:
    case-insensitive, spaces ignored, padding optional.
    """
    cleaned = "".join(secret.split()).upper()
    if not cleaned:
        raise TwoFactorFormatError("two factor secret is empty")
    cleaned += "=" * (-len(cleaned) % 8)
    try:
        return base64.b32decode(cleaned)
    except binascii.Error as e:
        raise TwoFactorFormatError("two factor secret is not valid base32") from e


def parse_key(uri: str) -> TwoFactorKey:
    """
    Parse an otpauth:// URI and make sure it holds a usable TOTP seed.

    Raises:
        TwoFactorFormatError: not an otpauth URI, missing/invalid secret,
            or the type is anything other than totp (e.g. hotp)
    """
    try:
        parts = urlsplit(uri)
    except ValueError as e:
        raise TwoFactorFormatError(f"failed to parse two factor uri: {e}") from e

    if parts.scheme.lower() != "otpauth":
        raise TwoFactorFormatError(f"two factor uri has scheme {parts.scheme!r}, expected otpauth")

    otp_type = parts.netloc.lower()
    if otp_type != TOTP_TYPE:
        raise TwoFactorFormatError(f"two factor key is of type {otp_type!r}, only totp is supported")

    params = parse_qs(parts.query)
    secret = params.get("secret", [""])[0]
    if not secret:
        raise TwoFactorFormatError("two factor uri has no secret")

    return TwoFactorKey(
        type=otp_type,
        label=unquote(parts.path.lstrip("/")),
        issuer=params.get("issuer", [""])[0],
        secret=decode_secret(secret),
    )


def generate_code(key: TwoFactorKey, at: float) -> str:
    """
    Compute the TOTP code for key at Unix time 'at'.

    Args:
        key: From parse_key()
        at: Seconds since epoch (UTC)

    Returns:
        Zero-padded numeric code, TOTP_DIGITS long
    """
    # Short secrets such as JBSWY3DPEHPK3PXP (80 bits) are common in the wild
    totp = TOTP(key.secret, TOTP_DIGITS, SHA1(), TOTP_PERIOD, enforce_key_length=False)
    return totp.generate(int(at)).decode("ascii")


def validate_seed(uri_or_seed: str, name: str, app_tag: str = APP_TAG) -> str:
    """
    Normalize and validate a seed before it is stored.

    Returns:
        The URI to store

    Raises:
        TwoFactorFormatError: seed is unusable; nothing should be stored
    """
    uri = normalize_uri(uri_or_seed, name, app_tag)
    try:
        parse_key(uri)
    except TwoFactorFormatError as e:
        logger.warning("Rejected two factor seed for %s: %s", name, e)
        raise
    return uri
