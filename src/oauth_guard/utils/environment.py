"""Utility functions for reading configuration from the environment."""

import logging
import os
import re
from datetime import timedelta
from typing import Final, Tuple

logger = logging.getLogger("oauth-guard.utils.environment")

_TRUTHY: Final[Tuple[str, ...]] = ("true", "1", "yes", "y", "on")
_PRODUCTION_NAMES: Final[Tuple[str, ...]] = ("production", "prod")

_DURATION_RE: Final[re.Pattern[str]] = re.compile(r"^\s*(\d+)\s*(ms|s|m|h|d)?\s*$")
_UNIT_SECONDS: Final[dict[str, float]] = {
    "ms": 0.001,
    "s": 1,
    "m": 60,
    "h": 3600,
    "d": 86400,
}


def _truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in _TRUTHY


def parse_duration(value: str) -> timedelta:
    """
    Parse a duration such as ``900``, ``900s``, ``15m``, ``12h`` or ``30d``.

    A bare number is read as seconds, matching the ``expires_in`` convention
    of OAuth token responses.
    """
    match = _DURATION_RE.match(value or "")
    if not match:
        raise ValueError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit or "s"])


def env_duration(name: str, default: timedelta) -> timedelta:
    """Return the duration stored in ``$name`` or *default* when unset/blank."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return parse_duration(raw)


def env_list(name: str) -> tuple[str, ...]:
    """
    Split a comma-separated variable into stripped, non-empty items.

    Items are kept verbatim otherwise: redirect URIs are compared as exact
    strings, so no case folding or normalisation happens here.
    """
    raw = os.getenv(name) or ""
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def is_production_env(env_var: str = "OAUTH_GUARD_ENV", flag_var: str = "OAUTH_GUARD_PRODUCTION") -> bool:
    """
    Determine whether production policy applies.

    Precedence (highest → lowest):
      1. ``$flag_var`` when explicitly set (truthy → production)
      2. ``$env_var`` equal to ``production`` / ``prod``
      3. development
    """
    flag = os.getenv(flag_var)
    if flag is not None:
        return _truthy(flag)
    env_name = (os.getenv(env_var) or "").strip().lower()
    if env_name in _PRODUCTION_NAMES:
        return True
    if env_name:
        logger.debug("Non-production environment %r", env_name)
    return False
