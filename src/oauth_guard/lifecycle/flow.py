"""Authorization-code flow gated by PKCE and redirect URI validation.

``authorize`` runs after the caller has authenticated the user.  It validates
the redirect URI *before* anything is bound to it, records the PKCE challenge
in a short-lived attempt record and hands back a signed, single-use
authorization code.  ``exchange`` redeems that code with the verifier and the
same redirect URI for an access token and a refresh token in a fresh family.

Attempt records live in a :class:`cachetools.TTLCache` driven by the injected
clock, so an attempt is treated as absent once its TTL (10 minutes by
default) has passed, whether or not anything swept it.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Final

from cachetools import TTLCache

from oauth_guard.lifecycle import redirect
from oauth_guard.lifecycle.clock import Clock, default_clock
from oauth_guard.lifecycle.config import TokenConfig
from oauth_guard.lifecycle.crypto import constant_time_equals, secure_random_urlsafe
from oauth_guard.lifecycle.errors import (
    CODE_INVALID,
    PKCE_MISMATCH,
    REDIRECT_MISMATCH,
    InvalidGrantError,
    InvalidParameterError,
)
from oauth_guard.lifecycle.models import AuthAttemptRecord, TokenPair
from oauth_guard.lifecycle.pkce import S256, verify_code_challenge
from oauth_guard.lifecycle.state import InvalidCodeError, build_code, parse_code
from oauth_guard.lifecycle.tokens import TokenIssuer

_LOG = logging.getLogger("oauth-guard.lifecycle.flow")

# BASE64URL(SHA256(x)) without padding is always 43 characters
_CHALLENGE_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z0-9_-]{43}$")
_DEFAULT_MAX_ATTEMPTS: Final[int] = 10_000


class AuthorizationFlow:
    """Issue and redeem PKCE-bound authorization codes."""

    def __init__(
        self,
        config: TokenConfig,
        issuer: TokenIssuer,
        *,
        clock: Clock = default_clock,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        whitelist: redirect.RedirectWhitelist | None = None,
    ) -> None:
        self.config = config
        self.issuer = issuer
        self.whitelist = (
            whitelist
            if whitelist is not None
            else redirect.RedirectWhitelist(config.redirect_whitelist, is_production=config.is_production)
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._attempts: TTLCache[str, AuthAttemptRecord] = TTLCache(
            maxsize=max_attempts,
            ttl=config.auth_attempt_ttl.total_seconds(),
            timer=clock,
        )

    def authorize(
        self,
        subject: str,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str = S256,
    ) -> str:
        """Record an authorization attempt and return its signed code.

        Raises
        ------
        InvalidRedirectError
            If *redirect_uri* fails the whitelist or protocol checks.
        InvalidParameterError
            Empty subject, unsupported challenge method or malformed challenge.
        """
        redirect.validate(redirect_uri, self.whitelist, self.config.is_production)
        if not isinstance(subject, str) or not subject.strip():
            raise InvalidParameterError("subject must be a non-empty string")
        if code_challenge_method != S256:
            raise InvalidParameterError("code_challenge_method must be S256")
        if not isinstance(code_challenge, str) or not _CHALLENGE_RE.match(code_challenge):
            raise InvalidParameterError("malformed code_challenge")

        attempt_id = secure_random_urlsafe(24)
        record = AuthAttemptRecord(
            attempt_id=attempt_id,
            subject=subject,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            created_at=int(self._clock()),
            ttl_seconds=int(self.config.auth_attempt_ttl.total_seconds()),
        )
        with self._lock:
            self._attempts[attempt_id] = record
        _LOG.debug("Recorded authorization attempt %s****", attempt_id[:6])
        return build_code(attempt_id, self.config.code_secret, clock=self._clock)

    def exchange(self, code: str, code_verifier: str, redirect_uri: str) -> TokenPair:
        """Redeem *code* for a token pair.  The code is spent even on failure.

        Raises
        ------
        InvalidGrantError
            Bad or expired code, redirect URI mismatch, or PKCE verification
            failure.
        """
        try:
            attempt_id, _ = parse_code(code, self.config.code_secret)
        except InvalidCodeError as exc:
            _LOG.info("Code exchange refused: %s", exc)
            raise InvalidGrantError(CODE_INVALID) from None

        with self._lock:
            record = self._attempts.pop(attempt_id, None)
        if record is None or record.is_expired(clock=self._clock):
            _LOG.info("Code exchange refused: unknown, used or expired attempt %s****", attempt_id[:6])
            raise InvalidGrantError(CODE_INVALID)
        if not constant_time_equals(record.redirect_uri, redirect_uri):
            _LOG.warning("Code exchange refused: redirect_uri mismatch for attempt %s****", attempt_id[:6])
            raise InvalidGrantError(REDIRECT_MISMATCH)
        if not verify_code_challenge(code_verifier, record.code_challenge):
            _LOG.warning("Code exchange refused: PKCE verification failed for attempt %s****", attempt_id[:6])
            raise InvalidGrantError(PKCE_MISMATCH)

        refresh = self.issuer.issue_refresh_token(record.subject)
        access = self.issuer.issue_access_token(record.subject, family_id=refresh.family_id)
        return TokenPair(
            access_token=access,
            refresh_token=refresh.token,
            family_id=refresh.family_id,
            expires_in=int(self.config.access_ttl.total_seconds()),
            refresh_expires_at=refresh.expires_at,
        )

    def pending_attempts(self) -> int:
        with self._lock:
            self._attempts.expire()
            return len(self._attempts)

    def cleanup_expired(self) -> None:
        with self._lock:
            self._attempts.expire()
