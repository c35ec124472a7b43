"""Typed, immutable records used by the token lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from oauth_guard.lifecycle.clock import Clock, default_clock

TokenKind = Literal["access", "refresh", "family"]


@dataclass(frozen=True, slots=True)
class AuthAttemptRecord:
    """Server-side record of one authorization attempt (PKCE challenge + redirect)."""

    attempt_id: str
    subject: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str = "S256"
    created_at: int = field(default_factory=lambda: int(default_clock()))
    # Attempts are stale after 10 minutes by default
    ttl_seconds: int = 600

    def is_expired(self, *, clock: Clock = default_clock) -> bool:
        """Return *True* if the attempt exceeded its TTL."""
        return (clock() - self.created_at) > self.ttl_seconds


@dataclass(frozen=True, slots=True)
class RefreshTokenRecord:
    """Live-store entry for one refresh token, keyed by ``token_hash``."""

    token_hash: str
    subject: str
    family_id: str
    created_at: int
    expires_at: int

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class RevocationEntry:
    """Registry entry for a revoked token or family.

    ``expires_at`` is the natural expiry of what the entry guards; the entry
    must not be swept before that moment.
    """

    key: str
    kind: TokenKind
    revoked_at: int
    expires_at: int
    family_id: str | None = None
    reason: str = "revoked"


@dataclass(frozen=True, slots=True)
class IssuedRefreshToken:
    token: str
    family_id: str
    expires_at: int


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access + refresh token pair returned by grants and rotations."""

    access_token: str
    refresh_token: str
    family_id: str
    expires_in: int
    refresh_expires_at: int
    token_type: str = "Bearer"

    def to_response(self) -> dict[str, Any]:
        """OAuth 2.0 token response body (RFC 6749 §5.1)."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "refresh_token": self.refresh_token,
        }
