"""Cryptographic primitives shared by the lifecycle modules.

Everything above this module (PKCE, signed codes, token hashing, at-rest
encryption of stored records) builds on the handful of helpers below.  All
randomness comes from :mod:`secrets`; all comparisons of secret-derived values
go through :func:`constant_time_equals`.

Strings are encoded with ``surrogatepass`` so that text decoded from untrusted
JSON (which may carry lone surrogates such as ``"\\ud800"``) hashes and
compares like any other input instead of raising ``UnicodeEncodeError``.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import secrets
from hashlib import sha256
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from oauth_guard.lifecycle.errors import DecryptionError

_AES_KEY_BYTES: Final[int] = 32
# 96-bit nonces are the GCM recommendation (NIST SP 800-38D)
_GCM_NONCE_BYTES: Final[int] = 12


def _to_bytes(data: str | bytes) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8", "surrogatepass")
    return data


def b64url_encode(data: bytes) -> str:
    """Base64-URL encode *without* padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    """Decode base64-URL data that may lack padding."""
    pad_len = (-len(data)) % 4
    return base64.urlsafe_b64decode(data + "=" * pad_len)


def secure_random_bytes(nbytes: int = 32) -> bytes:
    return secrets.token_bytes(nbytes)


def secure_random_hex(nbytes: int = 32) -> str:
    """Return ``2 * nbytes`` hex characters of CSPRNG output."""
    return secrets.token_hex(nbytes)


def secure_random_urlsafe(nbytes: int = 32) -> str:
    """Return base64url text (no padding) encoding *nbytes* random bytes."""
    return b64url_encode(secure_random_bytes(nbytes))


def sha256_hex(data: str | bytes) -> str:
    return sha256(_to_bytes(data)).hexdigest()


def sha256_b64url(data: str | bytes) -> str:
    return b64url_encode(sha256(_to_bytes(data)).digest())


def constant_time_equals(a: object, b: object) -> bool:
    """Compare two strings in constant time.

    Returns ``False`` for non-string input instead of raising, so callers on
    untrusted paths can pass whatever they received.
    """
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    return hmac.compare_digest(_to_bytes(a), _to_bytes(b))


def hmac_sha256(data: str, secret: str) -> str:
    """Hex HMAC-SHA256 of *data* keyed with *secret*."""
    return hmac.new(_to_bytes(secret), msg=_to_bytes(data), digestmod=sha256).hexdigest()


def verify_hmac_sha256(data: str, signature: str, secret: str) -> bool:
    return constant_time_equals(hmac_sha256(data, secret), signature)


def hash_token(token: str) -> str:
    """Storage key for a raw token.  Raw token values are never persisted."""
    return sha256_hex(token)


# --------------------------------------------------------------------------- #
# AES-256-GCM                                                                 #
# --------------------------------------------------------------------------- #
def generate_encryption_key() -> str:
    """Return a fresh 256-bit key as 64 hex characters."""
    return secure_random_hex(_AES_KEY_BYTES)


def _aes_key(key: str) -> bytes:
    try:
        raw = bytes.fromhex(key)
    except (TypeError, ValueError):
        raise ValueError("encryption key must be 64 hex characters") from None
    if len(raw) != _AES_KEY_BYTES:
        raise ValueError("encryption key must be 64 hex characters")
    return raw


def validate_encryption_key(key: str) -> None:
    """Raise ``ValueError`` unless *key* is a hex-encoded 256-bit key."""
    _aes_key(key)


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt *plaintext* with AES-256-GCM under the hex *key*.

    Returns
    -------
    str
        ``BASE64URL(nonce || ciphertext || tag)``; a fresh random nonce is
        drawn for every call.
    """
    nonce = secure_random_bytes(_GCM_NONCE_BYTES)
    sealed = AESGCM(_aes_key(key)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return b64url_encode(nonce + sealed)


def decrypt(token: str, key: str) -> str:
    """Reverse :func:`encrypt`.

    Raises
    ------
    DecryptionError
        If *token* is malformed, was tampered with, or *key* is wrong.
    """
    aead = AESGCM(_aes_key(key))
    try:
        blob = b64url_decode(token)
    except (ValueError, binascii.Error):
        raise DecryptionError("ciphertext is not valid base64url") from None
    if len(blob) <= _GCM_NONCE_BYTES:
        raise DecryptionError("ciphertext is truncated")
    try:
        plain = aead.decrypt(blob[:_GCM_NONCE_BYTES], blob[_GCM_NONCE_BYTES:], None)
    except InvalidTag:
        raise DecryptionError("ciphertext failed authentication") from None
    return plain.decode("utf-8")
