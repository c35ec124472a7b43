"""Revocation registry: the ledger consulted before any token is accepted.

Entries are keyed by access-token ``jti`` or refresh-token hash.  Revoked
families are tracked separately so a single lookup rejects every token that
carries the family id.

Retention rule: an entry is only eligible for :meth:`RevocationRegistry.cleanup`
once it is older than ``max_age`` **and** the token it guards has passed its
own expiry.  ``max_age`` may never be shorter than the longest token TTL,
otherwise a replayed token would look valid again.  Sweeping is for space
reclamation only; nothing relies on it for correctness.

When constructed with ``path=`` the registry is a JSON document that several
processes may share.  Lookups re-read the file, so entries written by other
processes are seen immediately.  Mutations hold an advisory ``<path>.lock``
file lock while they reload, apply the change and rewrite atomically, so one
writer never erases another writer's entries.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, replace
from datetime import timedelta
from pathlib import Path

from oauth_guard.lifecycle.clock import Clock, default_clock
from oauth_guard.lifecycle.errors import InvalidParameterError
from oauth_guard.lifecycle.log_utils import mask
from oauth_guard.lifecycle.models import RevocationEntry, TokenKind
from oauth_guard.lifecycle.store import _atomic_write, _file_lock

_LOG = logging.getLogger("oauth-guard.lifecycle.registry")


class RevocationRegistry:
    """Thread-safe ledger of revoked tokens and token families."""

    def __init__(
        self,
        *,
        min_retention: timedelta,
        clock: Clock = default_clock,
        path: str | Path | None = None,
    ) -> None:
        self.min_retention = min_retention
        self._clock = clock
        self._path = Path(path).expanduser() if path else None
        self._lock = threading.RLock()
        self._entries: dict[str, RevocationEntry] = {}
        self._families: dict[str, RevocationEntry] = {}
        with self._lock:
            self._reload()

    # ---------------- persistence ---------------------------------------- #
    def _reload(self) -> None:
        """Replace in-memory state with the file's contents (caller holds ``_lock``)."""
        if self._path is None:
            return
        entries: dict[str, RevocationEntry] = {}
        families: dict[str, RevocationEntry] = {}
        if self._path.exists():
            # a corrupt ledger must fail loudly: silently starting empty would
            # re-enable every revoked token
            with self._path.open(encoding="utf-8") as fh:
                data = json.load(fh)
            for raw in data.get("tokens", []):
                entry = RevocationEntry(**raw)
                entries[entry.key] = entry
            for raw in data.get("families", []):
                entry = RevocationEntry(**raw)
                families[entry.key] = entry
            _LOG.debug(
                "Loaded %d revoked tokens and %d revoked families from %s",
                len(entries),
                len(families),
                self._path,
            )
        self._entries = entries
        self._families = families

    def _save(self) -> None:
        if self._path is None:
            return
        _atomic_write(
            self._path,
            {
                "tokens": [asdict(e) for e in self._entries.values()],
                "families": [asdict(e) for e in self._families.values()],
            },
        )

    def _sync(self) -> None:
        if self._path is not None:
            with self._lock:
                self._reload()

    @contextmanager
    def _mutation(self) -> Iterator[None]:
        """Hold the thread lock and, when persisted, the file lock around a change.

        State is reloaded from disk before the change and written back after
        it; the body must call nothing that re-enters the file lock.
        """
        with self._lock:
            if self._path is None:
                yield
                return
            with _file_lock(self._path.with_suffix(self._path.suffix + ".lock")):
                self._reload()
                yield
                self._save()

    # ---------------- lookups -------------------------------------------- #
    def is_revoked(self, key: str) -> bool:
        self._sync()
        return key in self._entries

    def get(self, key: str) -> RevocationEntry | None:
        self._sync()
        return self._entries.get(key)

    def is_family_revoked(self, family_id: str | None) -> bool:
        if not family_id:
            return False
        self._sync()
        return family_id in self._families

    def __len__(self) -> int:
        self._sync()
        return len(self._entries)

    # ---------------- mutations ------------------------------------------ #
    def add(
        self,
        key: str,
        *,
        kind: TokenKind,
        expires_at: int,
        family_id: str | None = None,
        reason: str = "revoked",
    ) -> RevocationEntry:
        """Record *key* as revoked.

        Re-adding an existing key keeps the original ``revoked_at`` and only
        extends ``expires_at``, so repeated revocations never shorten retention.
        """
        if not key:
            raise InvalidParameterError("revocation key must be non-empty")
        now = int(self._clock())
        with self._mutation():
            existing = self._entries.get(key)
            if existing is not None and expires_at <= existing.expires_at:
                return existing
            if existing is not None:
                entry = replace(existing, expires_at=expires_at)
            else:
                entry = RevocationEntry(
                    key=key,
                    kind=kind,
                    revoked_at=now,
                    expires_at=int(expires_at),
                    family_id=family_id,
                    reason=reason,
                )
            self._entries[key] = entry
        _LOG.debug("Revoked %s token id=%s reason=%s", kind, mask(key), reason)
        return entry

    def revoke_family(self, family_id: str, *, expires_at: int, reason: str = "revoked") -> bool:
        """Mark *family_id* revoked.  Returns *False* if it already was."""
        if not family_id:
            raise InvalidParameterError("family_id must be non-empty")
        now = int(self._clock())
        with self._mutation():
            if family_id in self._families:
                return False
            self._families[family_id] = RevocationEntry(
                key=family_id,
                kind="family",
                revoked_at=now,
                expires_at=int(expires_at),
                family_id=family_id,
                reason=reason,
            )
        return True

    # ---------------- maintenance ---------------------------------------- #
    def cleanup(self, max_age: timedelta) -> int:
        """Remove entries older than *max_age* whose guarded token has expired.

        Raises
        ------
        InvalidParameterError
            If *max_age* is shorter than the longest token TTL.
        """
        if max_age < self.min_retention:
            raise InvalidParameterError(
                "cleanup max_age must be at least the longest token lifetime"
            )
        now = self._clock()
        horizon = now - max_age.total_seconds()

        def _sweepable(entry: RevocationEntry) -> bool:
            return entry.revoked_at < horizon and entry.expires_at <= now

        with self._mutation():
            stale_tokens = [k for k, e in self._entries.items() if _sweepable(e)]
            stale_families = [k for k, e in self._families.items() if _sweepable(e)]
            for k in stale_tokens:
                del self._entries[k]
            for k in stale_families:
                del self._families[k]
            removed = len(stale_tokens) + len(stale_families)
        if removed:
            _LOG.info("Swept %d expired revocation entries", removed)
        return removed
