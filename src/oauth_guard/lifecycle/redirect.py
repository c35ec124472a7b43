"""Redirect URI validation.

Candidate redirect URIs are matched against a whitelist of literal,
fully-qualified strings.  Matching is exact: no prefix, suffix, wildcard or
case-insensitive comparison is ever applied to an externally supplied URI,
which closes the open-redirect and subdomain-takeover classes that pattern
matching leaves open.

On top of the whitelist a protocol policy applies:

* production: ``https`` only;
* development: ``https``, or ``http`` for ``localhost`` / ``127.0.0.1``;
* every other scheme (``javascript:``, ``data:``, ``file:``, ``ftp:``...) is
  rejected in every mode.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Collection, Iterable, Iterator
from typing import Final
from urllib.parse import urlsplit

from oauth_guard.lifecycle.errors import InvalidRedirectError

_LOG = logging.getLogger("oauth-guard.lifecycle.redirect")

_LOOPBACK_HOSTS: Final[frozenset[str]] = frozenset({"localhost", "127.0.0.1"})


class RedirectWhitelist:
    """Thread-safe, runtime-editable set of literal redirect URIs.

    Seeded from configuration; :meth:`add` and :meth:`remove` let operators
    register or retire client callbacks without a restart.  Added URIs must
    already satisfy the protocol policy for the current mode.
    """

    def __init__(self, uris: Iterable[str] = (), *, is_production: bool = False) -> None:
        self.is_production = is_production
        self._lock = threading.Lock()
        self._uris: set[str] = set(uris)

    def add(self, uri: object) -> bool:
        """Register *uri*.  Returns *False* if it was already present.

        Raises
        ------
        InvalidRedirectError
            If *uri* is empty, carries a fragment or violates the protocol
            policy.
        """
        if not isinstance(uri, str) or not uri:
            raise InvalidRedirectError("redirect_uri must be a non-empty string")
        if "#" in uri:
            raise InvalidRedirectError("redirect_uri must not contain a fragment")
        if not has_secure_protocol(uri, self.is_production):
            raise InvalidRedirectError("redirect_uri uses a disallowed protocol")
        with self._lock:
            if uri in self._uris:
                return False
            self._uris.add(uri)
        _LOG.info("Added redirect_uri to whitelist")
        return True

    def remove(self, uri: str) -> bool:
        """Retire *uri*.  Returns *False* if it was not whitelisted."""
        with self._lock:
            if uri not in self._uris:
                return False
            self._uris.discard(uri)
        _LOG.info("Removed redirect_uri from whitelist")
        return True

    def snapshot(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._uris))

    def __contains__(self, uri: object) -> bool:
        with self._lock:
            return uri in self._uris

    def __iter__(self) -> Iterator[str]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        with self._lock:
            return len(self._uris)


def is_allowed(candidate: object, whitelist: Collection[str]) -> bool:
    """Exact string membership of *candidate* in *whitelist*."""
    if not isinstance(candidate, str) or not candidate:
        return False
    return candidate in whitelist


def has_secure_protocol(candidate: object, is_production: bool) -> bool:
    """Apply the scheme/host policy described in the module docstring."""
    if not isinstance(candidate, str) or not candidate:
        return False
    try:
        parts = urlsplit(candidate)
        host = parts.hostname
        # .port raises ValueError for out-of-range or non-numeric ports
        parts.port
    except ValueError:
        return False
    if not host:
        return False

    scheme = parts.scheme.lower()
    if scheme == "https":
        return True
    if scheme == "http" and not is_production:
        return host in _LOOPBACK_HOSTS
    return False


def validate(candidate: object, whitelist: Collection[str], is_production: bool) -> str:
    """Return *candidate* if it may be used as a redirect target.

    Raises
    ------
    InvalidRedirectError
        If the URI is not whitelisted, violates the protocol policy, or carries
        a fragment (RFC 6749 §3.1.2).
    """
    if not is_allowed(candidate, whitelist):
        _LOG.info("Rejected redirect_uri: not whitelisted")
        raise InvalidRedirectError("redirect_uri is not whitelisted")
    if not has_secure_protocol(candidate, is_production):
        _LOG.info("Rejected redirect_uri: insecure protocol (production=%s)", is_production)
        raise InvalidRedirectError("redirect_uri uses a disallowed protocol")
    if "#" in candidate:  # type: ignore[operator]
        raise InvalidRedirectError("redirect_uri must not contain a fragment")
    return candidate  # type: ignore[return-value]


def validate_redirect_uri(candidate: object, whitelist: Collection[str], is_production: bool) -> bool:
    """Boolean form of :func:`validate` for callers that only need a verdict."""
    try:
        validate(candidate, whitelist, is_production)
    except InvalidRedirectError:
        return False
    return True
