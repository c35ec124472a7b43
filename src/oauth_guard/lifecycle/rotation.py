"""Refresh-token rotation with reuse detection and family revocation.

Token states::

    live ──rotate──▶ consumed (in registry) ──replay──▶ family revoked

Every successful rotation consumes the presented refresh token and mints its
successor in the same family.  Presenting a consumed token again is treated as
theft: the whole family, including the currently live successor, is revoked
*before* the error is raised, so an attacker cannot race a second rotation
through the gap.

A token is always findable in the live store or in the registry (or both for
the instant between the two writes): rotation records the token as consumed
in the registry first, then removes it from the live store.  A lookup that
misses the store therefore re-checks the registry before concluding
``not_found``.
"""

from __future__ import annotations

import logging

import jwt

from oauth_guard.lifecycle.clock import Clock, default_clock
from oauth_guard.lifecycle.crypto import constant_time_equals, hash_token
from oauth_guard.lifecycle.errors import (
    EXPIRED,
    FAMILY_REVOKED,
    NOT_FOUND,
    REUSE_DETECTED,
    SUBJECT_MISMATCH,
    InvalidGrantError,
    InvalidParameterError,
)
from oauth_guard.lifecycle.log_utils import get_lifecycle_logger, mask
from oauth_guard.lifecycle.models import TokenPair
from oauth_guard.lifecycle.tokens import TokenIssuer

_LOG_NAME = "oauth-guard.lifecycle.rotation"
_LOG = logging.getLogger(_LOG_NAME)


class RotationEngine:
    """Rotate refresh tokens and revoke token families."""

    def __init__(self, issuer: TokenIssuer, *, clock: Clock = default_clock) -> None:
        self.issuer = issuer
        self.store = issuer.store
        self.registry = issuer.registry
        self.config = issuer.config
        self._clock = clock

    # ------------------------------------------------------------------ #
    # Rotation                                                           #
    # ------------------------------------------------------------------ #
    def rotate(self, old_token: str, subject: str) -> TokenPair:
        """Exchange *old_token* for a new access + refresh pair.

        Raises
        ------
        InvalidGrantError
            Unknown, expired or foreign token, or reuse of a consumed token
            (in which case the whole family is revoked first).
        """
        if not isinstance(old_token, str) or not old_token:
            raise InvalidGrantError(NOT_FOUND)
        if not isinstance(subject, str) or not subject:
            raise InvalidGrantError(SUBJECT_MISMATCH)

        token_hash = hash_token(old_token)
        self._raise_if_consumed(token_hash, subject)

        rec = self.store.get(token_hash)
        if rec is None:
            self._raise_if_consumed(token_hash, subject)
            _LOG.debug("Rotation refused: unknown token id=%s", mask(token_hash))
            raise InvalidGrantError(NOT_FOUND)
        if not constant_time_equals(rec.subject, subject):
            get_lifecycle_logger(
                base_logger_name=_LOG_NAME, family_id=rec.family_id, token_id=token_hash
            ).warning("Rotation refused: subject mismatch")
            raise InvalidGrantError(SUBJECT_MISMATCH)

        family_id = rec.family_id
        with self.store.family_lock(family_id):
            entry = self.registry.get(token_hash)
            if entry is not None:
                if entry.family_id is None:
                    raise InvalidGrantError(NOT_FOUND)
                self._on_reuse(family_id, token_hash, subject)

            # consumed marker first, then removal from the live store
            self.registry.add(
                token_hash,
                kind="refresh",
                expires_at=rec.expires_at,
                family_id=family_id,
                reason="rotated",
            )
            consumed = self.store.consume(token_hash)
            if consumed is None:
                # another holder consumed it between our read and the lock
                self._on_reuse(family_id, token_hash, subject)

            if consumed.is_expired(self._clock()):
                _LOG.debug("Rotation refused: expired token id=%s", mask(token_hash))
                raise InvalidGrantError(EXPIRED)

            issued = self.issuer._mint_refresh(subject, family_id)

        access_token = self.issuer.issue_access_token(subject, family_id=family_id)
        get_lifecycle_logger(
            base_logger_name=_LOG_NAME, subject=subject, family_id=family_id
        ).info("Rotated refresh token")
        return TokenPair(
            access_token=access_token,
            refresh_token=issued.token,
            family_id=family_id,
            expires_in=int(self.config.access_ttl.total_seconds()),
            refresh_expires_at=issued.expires_at,
        )

    def _raise_if_consumed(self, token_hash: str, subject: str) -> None:
        entry = self.registry.get(token_hash)
        if entry is None:
            return
        if entry.family_id is None:
            # revoked on its own (logout), not a rotated member
            raise InvalidGrantError(NOT_FOUND)
        with self.store.family_lock(entry.family_id):
            self._on_reuse(entry.family_id, token_hash, subject)

    def _on_reuse(self, family_id: str, token_hash: str, subject: str) -> None:
        """Revoke *family_id* and raise.  Caller holds the family lock.

        A family that is already revoked (administratively, or by an earlier
        reuse) only yields ``FAMILY_REVOKED``; the security event is logged once.
        """
        log = get_lifecycle_logger(
            base_logger_name=_LOG_NAME, subject=subject, family_id=family_id, token_id=token_hash
        )
        if self.registry.is_family_revoked(family_id):
            log.info("Rotation refused: token family already revoked")
            raise InvalidGrantError(FAMILY_REVOKED)
        log.warning("SECURITY: refresh token reuse detected; revoking token family")
        self._revoke_family_locked(family_id, reason=REUSE_DETECTED)
        raise InvalidGrantError(REUSE_DETECTED)

    # ------------------------------------------------------------------ #
    # Revocation                                                         #
    # ------------------------------------------------------------------ #
    def _revoke_family_locked(self, family_id: str, *, reason: str) -> int:
        retired = self.issuer._retire_live_members(family_id, reason=reason)
        # the family marker must outlive any token minted in it
        horizon = int(self._clock() + self.config.max_token_ttl.total_seconds())
        newly = self.registry.revoke_family(family_id, expires_at=horizon, reason=reason)
        if newly or retired:
            get_lifecycle_logger(base_logger_name=_LOG_NAME, family_id=family_id).info(
                "Revoked token family (%d live tokens)", retired
            )
        return retired

    def revoke_family(self, family_id: str) -> int:
        """Revoke every token of *family_id*.  Idempotent.

        Returns the number of live refresh tokens that were revoked.
        """
        if not isinstance(family_id, str) or not family_id:
            raise InvalidParameterError("family_id must be a non-empty string")
        with self.store.family_lock(family_id):
            return self._revoke_family_locked(family_id, reason="revoked")

    def revoke(self, token: str) -> None:
        """Revoke a single access or refresh token.

        Tokens that verify as our own signed access tokens are revoked by
        ``jti`` until their ``exp``.  Anything else is treated as a refresh
        token and revoked by hash, live or not.
        """
        if not isinstance(token, str) or not token:
            raise InvalidParameterError("token must be a non-empty string")

        claims = self._signed_access_claims(token)
        if claims is not None:
            self.registry.add(
                claims["jti"],
                kind="access",
                expires_at=int(claims["exp"]),
                family_id=claims.get("fid"),
                reason="revoked",
            )
            return

        token_hash = hash_token(token)
        rec = self.store.get(token_hash)
        if rec is None:
            # unknown or already consumed: keep a marker for the longest lifetime
            self.registry.add(
                token_hash,
                kind="refresh",
                expires_at=int(self._clock() + self.config.refresh_ttl.total_seconds()),
                reason="revoked",
            )
            return
        with self.store.family_lock(rec.family_id):
            # no family_id on the entry: a later replay is a plain invalid grant
            self.registry.add(token_hash, kind="refresh", expires_at=rec.expires_at, reason="revoked")
            self.store.consume(token_hash)
        _LOG.info("Revoked refresh token id=%s", mask(token_hash))

    def _signed_access_claims(self, token: str) -> dict | None:
        try:
            claims = self.issuer._decode_access(token)
        except (jwt.InvalidTokenError, ValueError, TypeError):
            return None
        if claims.get("type") != "access" or not isinstance(claims.get("jti"), str):
            return None
        return claims
