"""Explicit configuration for the token lifecycle.

All tunables are fields of :class:`TokenConfig` and are passed into
constructors.  Nothing below :mod:`oauth_guard.lifecycle.service` reads the
environment; :meth:`TokenConfig.from_env` is the single place that does.

Environment variables
---------------------
OAUTH_GUARD_JWT_SECRET          signing key for access tokens (required)
OAUTH_GUARD_JWT_REFRESH_SECRET  key for authorization-code signatures
                                (defaults to the JWT secret)
OAUTH_GUARD_ISSUER              ``iss`` claim (default ``oauth-guard``)
OAUTH_GUARD_AUDIENCE            ``aud`` claim (default ``oauth-guard-api``)
OAUTH_GUARD_ACCESS_TTL          default ``15m``
OAUTH_GUARD_REFRESH_TTL         default ``30d``
OAUTH_GUARD_AUTH_ATTEMPT_TTL    default ``10m``
OAUTH_GUARD_REDIRECT_URIS       comma-separated literal URIs
OAUTH_GUARD_ENV / OAUTH_GUARD_PRODUCTION  production mode switch
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Final

from oauth_guard.lifecycle.errors import ConfigurationError
from oauth_guard.lifecycle.pkce import S256
from oauth_guard.utils.environment import env_duration, env_list, is_production_env

_LOG = logging.getLogger("oauth-guard.lifecycle.config")

DEFAULT_ACCESS_TTL: Final[timedelta] = timedelta(minutes=15)
DEFAULT_REFRESH_TTL: Final[timedelta] = timedelta(days=30)
DEFAULT_AUTH_ATTEMPT_TTL: Final[timedelta] = timedelta(minutes=10)
# HS256 keys shorter than the hash output weaken the MAC
_MIN_SECRET_LEN: Final[int] = 32


@dataclass(frozen=True)
class TokenConfig:
    """Token lifecycle settings with documented defaults."""

    secret: str
    refresh_secret: str | None = None
    issuer: str = "oauth-guard"
    audience: str = "oauth-guard-api"
    access_ttl: timedelta = DEFAULT_ACCESS_TTL
    refresh_ttl: timedelta = DEFAULT_REFRESH_TTL
    auth_attempt_ttl: timedelta = DEFAULT_AUTH_ATTEMPT_TTL
    redirect_whitelist: tuple[str, ...] = field(default_factory=tuple)
    is_production: bool = False
    pkce_method: str = S256
    algorithm: str = "HS256"
    leeway: timedelta = timedelta(0)

    def __post_init__(self) -> None:
        if not self.secret:
            raise ConfigurationError("token signing secret is not configured")
        if self.pkce_method != S256:
            raise ConfigurationError("only the S256 PKCE method is supported")
        for name in ("access_ttl", "refresh_ttl", "auth_attempt_ttl"):
            if getattr(self, name) <= timedelta(0):
                raise ConfigurationError(f"{name} must be positive")
        if self.refresh_ttl < self.access_ttl:
            raise ConfigurationError("refresh_ttl must not be shorter than access_ttl")
        # accept any iterable of URIs but store an immutable tuple
        object.__setattr__(self, "redirect_whitelist", tuple(self.redirect_whitelist))
        if len(self.secret) < _MIN_SECRET_LEN:
            _LOG.warning(
                "Token signing secret is shorter than %d characters; use a longer random value.",
                _MIN_SECRET_LEN,
            )

    @property
    def code_secret(self) -> str:
        """Secret used to sign authorization codes."""
        return self.refresh_secret or self.secret

    @property
    def max_token_ttl(self) -> timedelta:
        """Longest lifetime of any token type; the registry cleanup horizon."""
        return max(self.access_ttl, self.refresh_ttl)

    @classmethod
    def from_env(cls) -> "TokenConfig":
        """Build a config from ``OAUTH_GUARD_*`` environment variables.

        Raises
        ------
        ConfigurationError
            If the signing secret is missing or a duration is malformed.
        """
        secret = os.getenv("OAUTH_GUARD_JWT_SECRET", "")
        if not secret:
            raise ConfigurationError("OAUTH_GUARD_JWT_SECRET is not set")
        try:
            access_ttl = env_duration("OAUTH_GUARD_ACCESS_TTL", DEFAULT_ACCESS_TTL)
            refresh_ttl = env_duration("OAUTH_GUARD_REFRESH_TTL", DEFAULT_REFRESH_TTL)
            attempt_ttl = env_duration("OAUTH_GUARD_AUTH_ATTEMPT_TTL", DEFAULT_AUTH_ATTEMPT_TTL)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        whitelist = env_list("OAUTH_GUARD_REDIRECT_URIS")
        if not whitelist:
            _LOG.warning("OAUTH_GUARD_REDIRECT_URIS is empty; every redirect_uri will be rejected.")

        return cls(
            secret=secret,
            refresh_secret=os.getenv("OAUTH_GUARD_JWT_REFRESH_SECRET") or None,
            issuer=os.getenv("OAUTH_GUARD_ISSUER") or "oauth-guard",
            audience=os.getenv("OAUTH_GUARD_AUDIENCE") or "oauth-guard-api",
            access_ttl=access_ttl,
            refresh_ttl=refresh_ttl,
            auth_attempt_ttl=attempt_ttl,
            redirect_whitelist=whitelist,
            is_production=is_production_env(),
        )
