"""Signed authorization codes.

The authorization code handed back to the client after a successful
``authorize`` step is not a bare random value: it encodes the attempt it
belongs to, so a tampered or forged code is rejected before any store lookup.

Format (plain text before base64-url encoding)::

    <attempt_id>:<ts>:<sig>

1. ``attempt_id`` – random identifier of the :class:`AuthAttemptRecord`
2. ``ts`` – UNIX timestamp from the injected clock
3. ``sig`` – hex HMAC-SHA256 of the first two fields under the code secret

The encoded value contains no characters that need escaping in a query
string.  Only the truncated ``attempt_id`` is ever logged.
"""

from __future__ import annotations

import binascii
import logging

from oauth_guard.lifecycle.clock import Clock, default_clock
from oauth_guard.lifecycle.crypto import b64url_decode, b64url_encode, hmac_sha256, verify_hmac_sha256

_LOG = logging.getLogger("oauth-guard.lifecycle.state")


class InvalidCodeError(Exception):
    """Raised when an authorization code is malformed or its signature fails."""


def build_code(attempt_id: str, secret: str, *, clock: Clock = default_clock) -> str:
    """Build the signed authorization code for *attempt_id*.

    Parameters
    ----------
    attempt_id:
        Identifier of the stored authorization attempt; must not contain ``:``.
    secret:
        Signing secret shared with :func:`parse_code`.
    clock:
        Time source; defaults to :func:`~oauth_guard.lifecycle.clock.default_clock`.
    """
    if not attempt_id or ":" in attempt_id:
        raise ValueError("attempt_id must be non-empty and free of ':'")
    payload = f"{attempt_id}:{int(clock())}"
    sig = hmac_sha256(payload, secret)
    _LOG.debug("Built code for attempt_id=%s****", attempt_id[:6])
    return b64url_encode(f"{payload}:{sig}".encode("utf-8"))


def parse_code(code: str, secret: str) -> tuple[str, int]:
    """Validate and decode an authorization code.

    Returns
    -------
    tuple[str, int]
        ``(attempt_id, ts)`` on success.

    Raises
    ------
    InvalidCodeError
        If the code is malformed or the signature does not validate.
    """
    if not isinstance(code, str) or not code:
        raise InvalidCodeError("code missing")
    try:
        decoded = b64url_decode(code).decode("utf-8")
    except (ValueError, binascii.Error):
        raise InvalidCodeError("code cannot be decoded") from None

    parts = decoded.split(":")
    if len(parts) != 3:
        raise InvalidCodeError("code has an unexpected format")

    attempt_id, ts_str, sig = parts
    if not attempt_id or not ts_str.isdigit():
        raise InvalidCodeError("code missing fields")

    if not verify_hmac_sha256(f"{attempt_id}:{ts_str}", sig, secret):
        raise InvalidCodeError("code signature mismatch")

    _LOG.debug("Parsed code for attempt_id=%s****", attempt_id[:6])
    return attempt_id, int(ts_str)
