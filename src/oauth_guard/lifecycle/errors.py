"""Exception types raised by the token lifecycle core.

Only lightweight, **data-carrying** exceptions live here so that web/CLI layers
can map them onto OAuth 2.0 error responses.  ``to_payload()`` never includes
tokens, verifiers or key material.
"""

from __future__ import annotations

from typing import Final


class OAuthGuardError(Exception):
    """Base class for every error raised by :mod:`oauth_guard`."""

    oauth_error: str = "server_error"
    public_message: str = "The request could not be processed."

    def to_payload(self) -> dict[str, str]:
        """Return a JSON-serialisable OAuth error envelope **without secrets**."""
        return {"error": self.oauth_error, "error_description": self.public_message}


class InvalidParameterError(OAuthGuardError, ValueError):
    """Malformed input to a pure function (bad verifier length, empty subject)."""

    oauth_error = "invalid_request"
    public_message = "A request parameter is missing or malformed."


class InvalidRedirectError(OAuthGuardError):
    """Redirect URI failed the whitelist or protocol checks."""

    oauth_error = "invalid_request"
    public_message = "Invalid redirect_uri."


# Reasons attached to InvalidGrantError for operators; never shown to callers.
REUSE_DETECTED: Final[str] = "reuse_detected"
NOT_FOUND: Final[str] = "not_found"
SUBJECT_MISMATCH: Final[str] = "subject_mismatch"
EXPIRED: Final[str] = "expired"
CODE_INVALID: Final[str] = "code_invalid"
PKCE_MISMATCH: Final[str] = "pkce_mismatch"
REDIRECT_MISMATCH: Final[str] = "redirect_mismatch"
FAMILY_REVOKED: Final[str] = "family_revoked"


class InvalidGrantError(OAuthGuardError):
    """A refresh, rotation or code exchange that cannot be honoured.

    ``reason`` is kept for server-side logging only.  The payload is identical
    for every reason so a replaying client cannot tell that reuse was detected.
    """

    oauth_error = "invalid_grant"
    public_message = "The provided grant is invalid, expired or revoked."

    def __init__(self, reason: str = NOT_FOUND) -> None:
        super().__init__(f"invalid grant ({reason})")
        self.reason: str = reason


class ConfigurationError(OAuthGuardError):
    """Required configuration is missing or inconsistent (startup only)."""

    public_message = "Server misconfiguration."


class DecryptionError(OAuthGuardError):
    """Stored ciphertext is malformed, tampered with, or under another key."""
