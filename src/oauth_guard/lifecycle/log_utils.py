"""Structured logging helpers for the token lifecycle.

Only a fixed set of *non-secret* context attributes is ever attached to log
records, each truncated so full identifiers do not end up in log storage:

- ``subject``        – user identifier (first 8 chars)
- ``family_id``      – refresh-token family (first 8 chars)
- ``token_id``       – access-token ``jti`` or refresh-token hash (first 8 chars)
- ``correlation_id`` – request correlation id supplied by the outer layer

Raw tokens, PKCE verifiers and signing secrets are never passed here.

Usage
-----
>>> from oauth_guard.lifecycle.log_utils import get_lifecycle_logger
>>> log = get_lifecycle_logger(family_id="3f2a9c0e51d84b7f", subject="user-42")
>>> log.warning("Refresh token reuse detected")
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, MutableMapping

_TRUNCATE = 8


def mask(value: str | None, keep: int = _TRUNCATE) -> str:
    """Return the first *keep* characters of *value* followed by ``****``."""
    if not value:
        return "-"
    return f"{value[:keep]}****"


class _LifecycleLoggerAdapter(logging.LoggerAdapter):
    """Inject whitelisted lifecycle context into log records."""

    extra_keys = ("subject", "family_id", "token_id", "correlation_id")
    truncated_keys = ("subject", "family_id", "token_id")

    def __init__(self, logger: logging.Logger, extra: Mapping[str, Any] | None = None):
        extra_clean: MutableMapping[str, Any] = {}
        for k in self.extra_keys:
            if not extra or extra.get(k) is None:
                continue
            if k in self.truncated_keys:
                extra_clean[k] = str(extra[k])[:_TRUNCATE]
            else:
                extra_clean[k] = extra[k]
        super().__init__(logger, extra_clean)

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        if kwargs.get("extra") is None:
            kwargs["extra"] = {}
        # call-site extras win
        for k, v in self.extra.items():
            kwargs["extra"].setdefault(k, v)
        return msg, kwargs


def get_lifecycle_logger(
    *,
    base_logger_name: str = "oauth-guard.lifecycle",
    subject: str | None = None,
    family_id: str | None = None,
    token_id: str | None = None,
    correlation_id: str | None = None,
) -> logging.LoggerAdapter:
    """Return a LoggerAdapter pre-filled with lifecycle context."""
    logger = logging.getLogger(base_logger_name)
    return _LifecycleLoggerAdapter(
        logger,
        {
            "subject": subject,
            "family_id": family_id,
            "token_id": token_id,
            "correlation_id": correlation_id,
        },
    )
