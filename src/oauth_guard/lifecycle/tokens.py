"""Token issuance and verification.

Access tokens are HS256 JWTs (PyJWT) carrying ``sub``, ``iss``, ``aud``,
``type="access"``, a unique ``jti`` for revocation lookups, ``iat`` and
``exp``.  When issued alongside a refresh token they also carry the refresh
family id (``fid``) so revoking the family cuts off its access tokens too.

Refresh tokens are opaque 256-bit random strings.  Only their SHA-256 hash is
stored, together with subject, family id and expiry.

Verification is a total function: whatever bytes arrive, the result is either
the claims or ``None``.  Expired and malformed tokens are told apart in the
debug log only.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta
from typing import Any, Final, Mapping

import jwt

from oauth_guard.lifecycle.clock import Clock, default_clock
from oauth_guard.lifecycle.config import TokenConfig
from oauth_guard.lifecycle.crypto import constant_time_equals, hash_token, secure_random_hex, secure_random_urlsafe
from oauth_guard.lifecycle.errors import FAMILY_REVOKED, InvalidGrantError, InvalidParameterError
from oauth_guard.lifecycle.log_utils import get_lifecycle_logger, mask
from oauth_guard.lifecycle.models import IssuedRefreshToken, RefreshTokenRecord
from oauth_guard.lifecycle.registry import RevocationRegistry
from oauth_guard.lifecycle.store import TokenStore

_LOG = logging.getLogger("oauth-guard.lifecycle.tokens")

ACCESS: Final[str] = "access"
RESERVED_CLAIMS: Final[frozenset[str]] = frozenset(
    {"sub", "iss", "aud", "type", "jti", "iat", "exp", "nbf", "fid"}
)
_REQUIRED_CLAIMS: Final[list[str]] = ["sub", "iss", "aud", "jti", "iat", "exp", "type"]
# expiry and issue time are checked against the injected clock instead
_DECODE_OPTIONS: Final[dict[str, Any]] = {
    "require": _REQUIRED_CLAIMS,
    "verify_exp": False,
    "verify_iat": False,
    "verify_nbf": False,
}
_REFRESH_TOKEN_BYTES: Final[int] = 32


def _require_subject(subject: object) -> str:
    if not isinstance(subject, str) or not subject.strip():
        raise InvalidParameterError("subject must be a non-empty string")
    return subject


class TokenIssuer:
    """Create and verify access and refresh tokens."""

    def __init__(
        self,
        config: TokenConfig,
        store: TokenStore,
        registry: RevocationRegistry,
        *,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config
        self.store = store
        self.registry = registry
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Access tokens                                                      #
    # ------------------------------------------------------------------ #
    def issue_access_token(
        self,
        subject: str,
        claims: Mapping[str, Any] | None = None,
        ttl: timedelta | None = None,
        *,
        family_id: str | None = None,
    ) -> str:
        """Return a signed access token for *subject*.

        Raises
        ------
        InvalidParameterError
            If *subject* is empty, *ttl* is not positive, or *claims* tries to
            set a reserved claim.
        """
        subject = _require_subject(subject)
        ttl = self.config.access_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise InvalidParameterError("access token ttl must be positive")
        extra = dict(claims or {})
        clash = RESERVED_CLAIMS.intersection(extra)
        if clash:
            raise InvalidParameterError(f"reserved claims cannot be overridden: {sorted(clash)}")

        now = self._clock()
        payload: dict[str, Any] = {
            **extra,
            "sub": subject,
            "iss": self.config.issuer,
            "aud": self.config.audience,
            "type": ACCESS,
            "jti": uuid.uuid4().hex,
            "iat": int(now),
            "exp": int(now + ttl.total_seconds()),
        }
        if family_id:
            payload["fid"] = family_id
        return jwt.encode(payload, self.config.secret, algorithm=self.config.algorithm)

    def _decode_access(self, token: str | bytes) -> dict[str, Any]:
        """Signature/issuer/audience check; raises ``jwt.InvalidTokenError``."""
        return jwt.decode(
            token,
            self.config.secret,
            algorithms=[self.config.algorithm],
            audience=self.config.audience,
            issuer=self.config.issuer,
            options=_DECODE_OPTIONS,
        )

    def verify_access_token(self, token: object) -> dict[str, Any] | None:
        """Return the claims of a valid access token, else ``None``.

        Steps: revocation lookup, then signature, issuer, audience, type and
        expiry.  Never raises for bad input.
        """
        if not isinstance(token, (str, bytes)) or not token:
            return None
        try:
            unverified = jwt.decode(token, options={"verify_signature": False})
            jti = unverified.get("jti")
            if isinstance(jti, str) and self.registry.is_revoked(jti):
                _LOG.debug("Access token rejected: revoked jti=%s", mask(jti))
                return None
            if self.registry.is_family_revoked(unverified.get("fid")):
                _LOG.debug("Access token rejected: family revoked")
                return None
            claims = self._decode_access(token)
        except (jwt.InvalidTokenError, ValueError, TypeError) as exc:
            _LOG.debug("Access token rejected: malformed (%s)", type(exc).__name__)
            return None

        if claims.get("type") != ACCESS:
            _LOG.debug("Access token rejected: wrong type")
            return None
        try:
            exp = int(claims["exp"])
            iat = int(claims["iat"])
        except (TypeError, ValueError):
            _LOG.debug("Access token rejected: malformed time claims")
            return None

        now = self._clock()
        leeway = self.config.leeway.total_seconds()
        if now >= exp + leeway:
            _LOG.debug("Access token rejected: expired jti=%s", mask(claims.get("jti")))
            return None
        if iat > now + leeway:
            _LOG.debug("Access token rejected: issued in the future")
            return None
        return claims

    # ------------------------------------------------------------------ #
    # Refresh tokens                                                     #
    # ------------------------------------------------------------------ #
    def _mint_refresh(self, subject: str, family_id: str) -> IssuedRefreshToken:
        """Create and store a refresh token.  Caller holds the family lock."""
        token = secure_random_urlsafe(_REFRESH_TOKEN_BYTES)
        now = int(self._clock())
        expires_at = now + int(self.config.refresh_ttl.total_seconds())
        self.store.set(
            RefreshTokenRecord(
                token_hash=hash_token(token),
                subject=subject,
                family_id=family_id,
                created_at=now,
                expires_at=expires_at,
            )
        )
        return IssuedRefreshToken(token=token, family_id=family_id, expires_at=expires_at)

    def _retire_live_members(self, family_id: str, reason: str) -> int:
        """Move every live member of *family_id* into the registry.  Caller holds the lock."""
        retired = 0
        for token_hash in self.store.family_members(family_id):
            rec = self.store.consume(token_hash)
            if rec is None:
                continue
            self.registry.add(
                token_hash,
                kind="refresh",
                expires_at=rec.expires_at,
                family_id=family_id,
                reason=reason,
            )
            retired += 1
        return retired

    def issue_refresh_token(self, subject: str, family_id: str | None = None) -> IssuedRefreshToken:
        """Issue a refresh token, starting a new family unless *family_id* is given.

        Issuing into an existing family supersedes its current live token so
        the family still has exactly one.

        Raises
        ------
        InvalidParameterError
            If *subject* is empty.
        InvalidGrantError
            If *family_id* names a revoked family.
        """
        subject = _require_subject(subject)
        if family_id is None:
            family_id = secure_random_hex(16)
            issued = self._mint_refresh(subject, family_id)
            get_lifecycle_logger(
                base_logger_name="oauth-guard.lifecycle.tokens", subject=subject, family_id=family_id
            ).info("Started refresh token family")
            return issued

        if self.registry.is_family_revoked(family_id):
            raise InvalidGrantError(FAMILY_REVOKED)
        with self.store.family_lock(family_id):
            self._retire_live_members(family_id, reason="superseded")
            return self._mint_refresh(subject, family_id)

    def verify_refresh_token(self, token: object, subject: object) -> bool:
        """True only for a live, unexpired, unrevoked token owned by *subject*."""
        if not isinstance(token, str) or not token or not isinstance(subject, str):
            return False
        token_hash = hash_token(token)
        if self.registry.is_revoked(token_hash):
            return False
        rec = self.store.get(token_hash)
        if rec is None:
            return False
        if not constant_time_equals(rec.subject, subject):
            return False
        if rec.is_expired(self._clock()):
            return False
        return not self.registry.is_family_revoked(rec.family_id)

    # ------------------------------------------------------------------ #
    # Inspection helpers                                                 #
    # ------------------------------------------------------------------ #
    @staticmethod
    def decode_unverified(token: object) -> dict[str, Any] | None:
        """Decode a JWT **without** verifying it.  Never use for authorization."""
        if not isinstance(token, (str, bytes)) or not token:
            return None
        try:
            return jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None

    def is_expiring_soon(self, token: object, threshold: timedelta = timedelta(minutes=5)) -> bool:
        """True when the token's ``exp`` falls within *threshold* from now."""
        claims = self.decode_unverified(token)
        if not claims or "exp" not in claims:
            return False
        try:
            exp = float(claims["exp"])
        except (TypeError, ValueError):
            return False
        return (exp - self._clock()) < threshold.total_seconds()
