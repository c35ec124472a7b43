"""Live refresh-token storage.

This module defines the *narrow* persistence capability the rotation engine
depends on (:class:`TokenStore`) and two implementations:

* :class:`MemoryTokenStore` – process-local dict guarded by locks.
* :class:`DiskTokenStore` – JSON files, usable across processes.

Both honour the same guarantees:

* **Atomic consume** – :meth:`TokenStore.consume` removes and returns a record
  in one step; of two concurrent consumers at most one gets the record.
* **Per-family serialization** – :meth:`TokenStore.family_lock` is the mutual
  exclusion the rotation engine holds while it consumes one token and mints
  the next, so a family never has two live tokens.
* **Hashed keys** – records are keyed by the SHA-256 of the refresh token;
  raw token values never reach storage.

Environment variables
---------------------
OAUTH_GUARD_STORAGE_DIR
    Base directory for :class:`DiskTokenStore` when none is passed.
    Defaults to ``~/.oauth-guard/tokens``.
OAUTH_GUARD_ENCRYPT_KEY
    64 hex characters (see :func:`~oauth_guard.lifecycle.crypto.generate_encryption_key`).
    When set, :class:`DiskTokenStore` writes records AES-256-GCM encrypted.
"""

from __future__ import annotations

import json
import os
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict
from hashlib import sha256
from pathlib import Path
from typing import Protocol, runtime_checkable

from oauth_guard.lifecycle.crypto import decrypt, encrypt, validate_encryption_key
from oauth_guard.lifecycle.errors import ConfigurationError
from oauth_guard.lifecycle.models import RefreshTokenRecord

# --------------------------------------------------------------------------- #
# helpers                                                                     #
# --------------------------------------------------------------------------- #


def _hash(text: str, length: int = 24) -> str:
    return sha256(text.encode()).hexdigest()[:length]


def _atomic_write(path: Path, data: dict | list) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + f".{os.getpid()}.{threading.get_ident()}.tmp")
    with tmp.open("w", encoding="utf-8") as fh:
        json.dump(data, fh, separators=(",", ":"), sort_keys=True)
    os.replace(tmp, path)  # atomic on POSIX


@contextmanager
def _file_lock(lock_path: Path, retries: int = 100, delay: float = 0.05) -> Iterator[None]:
    """Advisory file lock using ``os.O_EXCL`` temp-file creation."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    for attempt in range(retries + 1):
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_RDWR)
            os.close(fd)
            break
        except FileExistsError:
            if attempt == retries:
                raise TimeoutError(f"Could not acquire lock {lock_path}") from None
            time.sleep(delay)
    try:
        yield
    finally:
        lock_path.unlink(missing_ok=True)


# --------------------------------------------------------------------------- #
# public interface                                                            #
# --------------------------------------------------------------------------- #


@runtime_checkable
class TokenStore(Protocol):
    """Minimal persistence contract for live refresh tokens."""

    def get(self, token_hash: str) -> RefreshTokenRecord | None: ...
    def set(self, record: RefreshTokenRecord) -> None: ...
    def delete(self, token_hash: str) -> bool: ...
    def exists(self, token_hash: str) -> bool: ...

    def consume(self, token_hash: str) -> RefreshTokenRecord | None:
        """Atomically remove and return the live record (``None`` if absent)."""
        ...

    def family_members(self, family_id: str) -> list[str]: ...

    def family_lock(self, family_id: str): ...  # context manager

    # ----- maintenance ----------------------------------------------------- #
    def cleanup_expired(self, now: float) -> int: ...


# --------------------------------------------------------------------------- #
# Memory implementation                                                       #
# --------------------------------------------------------------------------- #


class MemoryTokenStore(TokenStore):
    """Thread-safe in-process implementation of :class:`TokenStore`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, RefreshTokenRecord] = {}
        self._families: dict[str, set[str]] = {}
        self._family_locks: dict[str, threading.Lock] = {}
        # holders and waiters per family lock; a lock in use is never evicted
        self._lock_users: dict[str, int] = {}

    def get(self, token_hash: str) -> RefreshTokenRecord | None:
        return self._records.get(token_hash)

    def set(self, record: RefreshTokenRecord) -> None:
        with self._lock:
            self._records[record.token_hash] = record
            self._families.setdefault(record.family_id, set()).add(record.token_hash)

    def _pop(self, token_hash: str) -> RefreshTokenRecord | None:
        rec = self._records.pop(token_hash, None)
        if rec is not None:
            members = self._families.get(rec.family_id)
            if members is not None:
                members.discard(token_hash)
                if not members:
                    del self._families[rec.family_id]
        return rec

    def delete(self, token_hash: str) -> bool:
        with self._lock:
            return self._pop(token_hash) is not None

    def exists(self, token_hash: str) -> bool:
        return token_hash in self._records

    def consume(self, token_hash: str) -> RefreshTokenRecord | None:
        with self._lock:
            return self._pop(token_hash)

    def family_members(self, family_id: str) -> list[str]:
        with self._lock:
            return sorted(self._families.get(family_id, ()))

    def _checkout_lock(self, family_id: str) -> threading.Lock:
        with self._lock:
            self._lock_users[family_id] = self._lock_users.get(family_id, 0) + 1
            return self._family_locks.setdefault(family_id, threading.Lock())

    def _return_lock(self, family_id: str) -> None:
        with self._lock:
            remaining = self._lock_users[family_id] - 1
            if remaining:
                self._lock_users[family_id] = remaining
            else:
                del self._lock_users[family_id]

    @contextmanager
    def family_lock(self, family_id: str) -> Iterator[None]:
        lock = self._checkout_lock(family_id)
        try:
            with lock:
                yield
        finally:
            self._return_lock(family_id)

    def cleanup_expired(self, now: float) -> int:
        with self._lock:
            expired = [h for h, rec in self._records.items() if rec.is_expired(now)]
            for h in expired:
                self._pop(h)
            # drop locks of families with no live members and no holders/waiters
            idle = [
                f for f in self._family_locks
                if f not in self._families and f not in self._lock_users
            ]
            for fid in idle:
                del self._family_locks[fid]
        return len(expired)


# --------------------------------------------------------------------------- #
# Disk implementation                                                         #
# --------------------------------------------------------------------------- #


class DiskTokenStore(TokenStore):
    """JSON-file implementation of :class:`TokenStore`.

    Layout under ``base_dir``::

        live/<token_hash>.json          current records
        consumed/<token_hash>.json      records moved here by consume()
        families/<fid>/<token_hash>     membership markers
        locks/<fid>.lock                per-family advisory locks

    With an ``encryption_key`` each record file holds ``{"enc": <AES-GCM
    envelope>}`` instead of the plain record.  Plain records written before
    a key was configured are still readable.
    """

    def __init__(
        self,
        base_dir: str | os.PathLike | None = None,
        *,
        encryption_key: str | None = None,
    ) -> None:
        self.base_dir = Path(
            base_dir
            or os.getenv("OAUTH_GUARD_STORAGE_DIR")
            or Path.home() / ".oauth-guard" / "tokens"
        ).expanduser()
        self._key = encryption_key or os.getenv("OAUTH_GUARD_ENCRYPT_KEY") or None
        if self._key is not None:
            try:
                validate_encryption_key(self._key)
            except ValueError as exc:
                raise ConfigurationError(f"invalid token store encryption key: {exc}") from None
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def encrypted(self) -> bool:
        return self._key is not None

    # ---------------- paths ---------------------------------------------- #
    def _live_path(self, token_hash: str) -> Path:
        # token hashes are hex digests; re-hash anything else for filename safety
        name = token_hash if token_hash.isalnum() else _hash(token_hash, 64)
        return self.base_dir / "live" / f"{name}.json"

    def _consumed_path(self, token_hash: str) -> Path:
        return self.base_dir / "consumed" / self._live_path(token_hash).name

    def _family_dir(self, family_id: str) -> Path:
        return self.base_dir / "families" / _hash(family_id)

    def _family_lock_path(self, family_id: str) -> Path:
        return self.base_dir / "locks" / f"{_hash(family_id)}.lock"

    def _read(self, path: Path) -> RefreshTokenRecord | None:
        try:
            with path.open(encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        if "enc" in data:
            if self._key is None:
                raise ConfigurationError(
                    f"{path.name} is encrypted but OAUTH_GUARD_ENCRYPT_KEY is not set"
                )
            data = json.loads(decrypt(data["enc"], self._key))
        return RefreshTokenRecord(**data)

    def _serialize(self, record: RefreshTokenRecord) -> dict:
        data = asdict(record)
        if self._key is None:
            return data
        return {"enc": encrypt(json.dumps(data, sort_keys=True), self._key)}

    # ---------------- TokenStore ----------------------------------------- #
    def get(self, token_hash: str) -> RefreshTokenRecord | None:
        return self._read(self._live_path(token_hash))

    def set(self, record: RefreshTokenRecord) -> None:
        _atomic_write(self._live_path(record.token_hash), self._serialize(record))
        marker = self._family_dir(record.family_id) / self._live_path(record.token_hash).stem
        marker.parent.mkdir(parents=True, exist_ok=True)
        marker.touch()

    def _drop_marker(self, rec: RefreshTokenRecord) -> None:
        marker = self._family_dir(rec.family_id) / self._live_path(rec.token_hash).stem
        marker.unlink(missing_ok=True)

    def delete(self, token_hash: str) -> bool:
        path = self._live_path(token_hash)
        rec = self._read(path)
        if rec is None:
            return False
        path.unlink(missing_ok=True)
        self._drop_marker(rec)
        return True

    def exists(self, token_hash: str) -> bool:
        return self._live_path(token_hash).exists()

    def consume(self, token_hash: str) -> RefreshTokenRecord | None:
        """Move the record into ``consumed/`` and return it (single-use)."""
        src = self._live_path(token_hash)
        dst = self._consumed_path(token_hash)
        dst.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.replace(src, dst)  # atomic rename – fails if a concurrent consumer won
        except FileNotFoundError:
            return None
        rec = self._read(dst)
        if rec is not None:
            self._drop_marker(rec)
        return rec

    def family_members(self, family_id: str) -> list[str]:
        fam_dir = self._family_dir(family_id)
        if not fam_dir.exists():
            return []
        members: list[str] = []
        for marker in sorted(fam_dir.iterdir()):
            if self.exists(marker.name):
                members.append(marker.name)
            else:
                marker.unlink(missing_ok=True)
        return members

    @contextmanager
    def family_lock(self, family_id: str) -> Iterator[None]:
        with _file_lock(self._family_lock_path(family_id)):
            yield

    # ---------------- maintenance ---------------------------------------- #
    def cleanup_expired(self, now: float) -> int:
        """Remove expired live records and every consumed record."""
        removed = 0
        live_dir = self.base_dir / "live"
        if live_dir.exists():
            for p in live_dir.glob("*.json"):
                rec = self._read(p)
                if rec is not None and rec.is_expired(now):
                    p.unlink(missing_ok=True)
                    self._drop_marker(rec)
                    removed += 1
        consumed_dir = self.base_dir / "consumed"
        if consumed_dir.exists():
            # consumed records are tracked by the revocation registry
            for p in consumed_dir.glob("*.json"):
                p.unlink(missing_ok=True)
        return removed


# --------------------------------------------------------------------------- #
# Convenience – default singleton                                            #
# --------------------------------------------------------------------------- #

_default_store: MemoryTokenStore | None = None
_default_store_lock = threading.Lock()


def default_store() -> MemoryTokenStore:
    """Return a process-wide singleton :class:`MemoryTokenStore`."""
    global _default_store  # noqa: PLW0603
    with _default_store_lock:
        if _default_store is None:
            _default_store = MemoryTokenStore()
        return _default_store
