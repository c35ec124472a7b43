"""TokenLifecycleService – the surface external callers use.

HTTP handlers, CLIs and background jobs talk to this façade only.  It wires a
:class:`TokenConfig`, a live-token store, the revocation registry, the issuer,
the rotation engine and the authorization flow together, and exposes the
operations callers need with OAuth-shaped names.

Failure modes follow one rule: verification paths return ``None`` / ``False``;
grant paths raise :class:`~oauth_guard.lifecycle.errors.InvalidGrantError`;
bad programmer input raises
:class:`~oauth_guard.lifecycle.errors.InvalidParameterError`.
"""

from __future__ import annotations

import logging
import threading
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping

from oauth_guard.lifecycle import pkce, redirect
from oauth_guard.lifecycle.clock import Clock, default_clock
from oauth_guard.lifecycle.config import TokenConfig
from oauth_guard.lifecycle.flow import AuthorizationFlow
from oauth_guard.lifecycle.models import IssuedRefreshToken, TokenPair
from oauth_guard.lifecycle.registry import RevocationRegistry
from oauth_guard.lifecycle.rotation import RotationEngine
from oauth_guard.lifecycle.store import TokenStore, default_store
from oauth_guard.lifecycle.tokens import TokenIssuer

_LOG = logging.getLogger("oauth-guard.lifecycle.service")


class TokenLifecycleService:
    """Application service for the whole token lifecycle."""

    def __init__(
        self,
        config: TokenConfig,
        *,
        store: TokenStore | None = None,
        registry: RevocationRegistry | None = None,
        registry_path: str | Path | None = None,
        clock: Clock = default_clock,
    ) -> None:
        self.config = config
        self.store = store if store is not None else default_store()
        # an empty registry is falsy (__len__)
        self.registry = (
            registry
            if registry is not None
            else RevocationRegistry(min_retention=config.max_token_ttl, clock=clock, path=registry_path)
        )
        self._clock = clock
        self.issuer = TokenIssuer(config, self.store, self.registry, clock=clock)
        self.rotation = RotationEngine(self.issuer, clock=clock)
        self.redirect_whitelist = redirect.RedirectWhitelist(
            config.redirect_whitelist, is_production=config.is_production
        )
        self.flow = AuthorizationFlow(config, self.issuer, clock=clock, whitelist=self.redirect_whitelist)

    # ------------------------------------------------------------------ #
    # PKCE                                                               #
    # ------------------------------------------------------------------ #
    @staticmethod
    def generate_verifier(length: int = pkce.MAX_VERIFIER_LEN) -> str:
        return pkce.generate_code_verifier(length)

    @staticmethod
    def generate_challenge(verifier: str) -> str:
        return pkce.code_challenge_s256(verifier)

    @staticmethod
    def verify_challenge(verifier: object, stored_challenge: object) -> bool:
        return pkce.verify_code_challenge(verifier, stored_challenge)

    # ------------------------------------------------------------------ #
    # Redirect URIs                                                      #
    # ------------------------------------------------------------------ #
    def validate_redirect_uri(self, candidate: object) -> bool:
        """Check *candidate* against the current whitelist and mode."""
        return redirect.validate_redirect_uri(
            candidate, self.redirect_whitelist, self.config.is_production
        )

    def add_redirect_uri(self, uri: str) -> bool:
        """Whitelist *uri* at runtime.  Raises ``InvalidRedirectError`` if it is unsafe."""
        return self.redirect_whitelist.add(uri)

    def remove_redirect_uri(self, uri: str) -> bool:
        return self.redirect_whitelist.remove(uri)

    def allowed_redirect_uris(self) -> tuple[str, ...]:
        return self.redirect_whitelist.snapshot()

    # ------------------------------------------------------------------ #
    # Authorization code grant                                           #
    # ------------------------------------------------------------------ #
    def authorize(
        self,
        *,
        subject: str,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str = pkce.S256,
    ) -> str:
        """Return a single-use authorization code bound to the PKCE challenge."""
        return self.flow.authorize(subject, redirect_uri, code_challenge, code_challenge_method)

    def exchange_code(self, *, code: str, code_verifier: str, redirect_uri: str) -> TokenPair:
        """Redeem an authorization code for the initial token pair."""
        return self.flow.exchange(code, code_verifier, redirect_uri)

    # ------------------------------------------------------------------ #
    # Tokens                                                             #
    # ------------------------------------------------------------------ #
    def issue_access_token(
        self,
        subject: str,
        claims: Mapping[str, Any] | None = None,
        ttl: timedelta | None = None,
    ) -> str:
        return self.issuer.issue_access_token(subject, claims, ttl)

    def verify_access_token(self, token: object) -> dict[str, Any] | None:
        return self.issuer.verify_access_token(token)

    def issue_refresh_token(self, subject: str, family_id: str | None = None) -> IssuedRefreshToken:
        return self.issuer.issue_refresh_token(subject, family_id)

    def verify_refresh_token(self, token: object, subject: object) -> bool:
        return self.issuer.verify_refresh_token(token, subject)

    def issue_token_pair(self, subject: str, claims: Mapping[str, Any] | None = None) -> TokenPair:
        """Start a new family and return its first access + refresh pair."""
        refresh = self.issuer.issue_refresh_token(subject)
        access = self.issuer.issue_access_token(subject, claims, family_id=refresh.family_id)
        return TokenPair(
            access_token=access,
            refresh_token=refresh.token,
            family_id=refresh.family_id,
            expires_in=int(self.config.access_ttl.total_seconds()),
            refresh_expires_at=refresh.expires_at,
        )

    def rotate_refresh_token(self, refresh_token: str, subject: str) -> TokenPair:
        return self.rotation.rotate(refresh_token, subject)

    def revoke_token(self, token: str) -> None:
        self.rotation.revoke(token)

    def revoke_family(self, family_id: str) -> int:
        return self.rotation.revoke_family(family_id)

    # ------------------------------------------------------------------ #
    # Maintenance (driven by an external scheduler)                      #
    # ------------------------------------------------------------------ #
    def cleanup(self, max_age: timedelta | None = None) -> dict[str, int]:
        """Sweep expired attempts, live records and registry entries.

        *max_age* defaults to the longest token TTL, the shortest horizon the
        registry accepts.
        """
        self.flow.cleanup_expired()
        live = self.store.cleanup_expired(self._clock())
        revoked = self.registry.cleanup(max_age or self.config.max_token_ttl)
        _LOG.debug("Cleanup removed %d live records and %d registry entries", live, revoked)
        return {"live_tokens": live, "revocations": revoked}


# --------------------------------------------------------------------------- #
# Convenience – default singleton                                            #
# --------------------------------------------------------------------------- #

_default_service: TokenLifecycleService | None = None
_default_service_lock = threading.Lock()


def default_service() -> TokenLifecycleService:
    """Return a process-wide service configured from the environment."""
    global _default_service  # noqa: PLW0603
    with _default_service_lock:
        if _default_service is None:
            _default_service = TokenLifecycleService(TokenConfig.from_env())
        return _default_service
