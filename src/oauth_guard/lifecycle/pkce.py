"""PKCE (Proof Key for Code Exchange) helpers.

RFC 7636 protects the authorization-code grant against interception: the
client keeps a random *code verifier* and only sends its *code challenge*
(``BASE64URL(SHA256(verifier))``) with the authorization request.  At token
exchange the verifier is revealed and checked against the stored challenge.

Only the S256 transformation is implemented.  ``plain`` would put the verifier
on the wire at authorization time and defeat the point of PKCE.

This module performs **no logging** of verifiers or challenges.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Final

from oauth_guard.lifecycle.crypto import (
    constant_time_equals,
    secure_random_urlsafe,
    sha256_b64url,
)
from oauth_guard.lifecycle.errors import InvalidParameterError

# RFC-7636 §4.1 mandates the verifier length between 43 and 128 characters.
MIN_VERIFIER_LEN: Final[int] = 43
MAX_VERIFIER_LEN: Final[int] = 128
S256: Final[str] = "S256"

_VERIFIER_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9\-._~]+$")


@dataclass(frozen=True, slots=True)
class PkcePair:
    code_verifier: str
    code_challenge: str
    code_challenge_method: str = S256


def generate_code_verifier(length: int = MAX_VERIFIER_LEN) -> str:
    """Generate a high-entropy code verifier of exactly *length* characters.

    Parameters
    ----------
    length:
        Desired length between 43 and 128 characters (default 128).

    Raises
    ------
    InvalidParameterError
        If *length* is outside 43-128.
    """
    if isinstance(length, bool) or not isinstance(length, int):
        raise InvalidParameterError("code verifier length must be an integer")
    if not MIN_VERIFIER_LEN <= length <= MAX_VERIFIER_LEN:
        raise InvalidParameterError("code verifier length must be 43-128 characters")
    # base64url of n random bytes is always longer than n characters
    return secure_random_urlsafe(length)[:length]


def is_valid_code_verifier(value: object) -> bool:
    """Return *True* if *value* has a legal verifier length and alphabet."""
    if not isinstance(value, str):
        return False
    if not MIN_VERIFIER_LEN <= len(value) <= MAX_VERIFIER_LEN:
        return False
    return _VERIFIER_RE.match(value) is not None


def code_challenge_s256(verifier: str) -> str:
    """Compute the *S256* code challenge for *verifier*.

    Returns
    -------
    str
        Base64url-encoded SHA-256 hash without padding.

    Raises
    ------
    InvalidParameterError
        If *verifier* is empty, not a string, or not a well-formed verifier.
    """
    if not verifier or not isinstance(verifier, str):
        raise InvalidParameterError("code verifier must be a non-empty string")
    if not is_valid_code_verifier(verifier):
        raise InvalidParameterError("invalid code verifier format")
    return sha256_b64url(verifier.encode("ascii"))


def verify_code_challenge(verifier: object, stored_challenge: object) -> bool:
    """Check *verifier* against *stored_challenge* in constant time.

    Never raises: malformed input of any kind yields ``False``.
    """
    if not is_valid_code_verifier(verifier) or not isinstance(stored_challenge, str):
        return False
    return constant_time_equals(code_challenge_s256(verifier), stored_challenge)  # type: ignore[arg-type]


def generate_pkce_pair(length: int = MAX_VERIFIER_LEN) -> PkcePair:
    """Return a fresh verifier together with its S256 challenge."""
    verifier = generate_code_verifier(length)
    return PkcePair(code_verifier=verifier, code_challenge=code_challenge_s256(verifier))
