"""Unit tests for the PKCE-bound authorization-code flow."""

from __future__ import annotations

import json

import pytest

from oauth_guard.lifecycle.clock import ManualClock
from oauth_guard.lifecycle.crypto import b64url_decode, b64url_encode
from oauth_guard.lifecycle.errors import (
    CODE_INVALID,
    PKCE_MISMATCH,
    REDIRECT_MISMATCH,
    InvalidGrantError,
    InvalidParameterError,
    InvalidRedirectError,
)
from oauth_guard.lifecycle.pkce import generate_pkce_pair
from oauth_guard.lifecycle.service import TokenLifecycleService

REDIRECT = "https://app.example/cb"
LONE_SURROGATE = json.loads('"\\ud800"')


def _authorize(service: TokenLifecycleService, redirect_uri: str = REDIRECT):
    pair = generate_pkce_pair()
    code = service.authorize(
        subject="user-1",
        redirect_uri=redirect_uri,
        code_challenge=pair.code_challenge,
    )
    return pair, code


def test_authorize_then_exchange(service: TokenLifecycleService) -> None:
    pkce, code = _authorize(service)
    tokens = service.exchange_code(code=code, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT)

    claims = service.verify_access_token(tokens.access_token)
    assert claims["sub"] == "user-1"
    assert claims["fid"] == tokens.family_id
    assert service.verify_refresh_token(tokens.refresh_token, "user-1") is True
    assert service.flow.pending_attempts() == 0


def test_loopback_redirect_allowed_in_development(service: TokenLifecycleService) -> None:
    pkce, code = _authorize(service, "http://localhost:3000/callback")
    service.exchange_code(
        code=code, code_verifier=pkce.code_verifier, redirect_uri="http://localhost:3000/callback"
    )


def test_code_is_single_use(service: TokenLifecycleService) -> None:
    pkce, code = _authorize(service)
    service.exchange_code(code=code, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT)
    with pytest.raises(InvalidGrantError) as exc_info:
        service.exchange_code(code=code, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT)
    assert exc_info.value.reason == CODE_INVALID


def test_failed_exchange_burns_code(service: TokenLifecycleService) -> None:
    pkce, code = _authorize(service)
    other = generate_pkce_pair()
    with pytest.raises(InvalidGrantError) as exc_info:
        service.exchange_code(code=code, code_verifier=other.code_verifier, redirect_uri=REDIRECT)
    assert exc_info.value.reason == PKCE_MISMATCH
    with pytest.raises(InvalidGrantError) as exc_info:
        service.exchange_code(code=code, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT)
    assert exc_info.value.reason == CODE_INVALID


def test_redirect_mismatch(service: TokenLifecycleService) -> None:
    pkce, code = _authorize(service)
    with pytest.raises(InvalidGrantError) as exc_info:
        service.exchange_code(
            code=code,
            code_verifier=pkce.code_verifier,
            redirect_uri="http://localhost:3000/callback",
        )
    assert exc_info.value.reason == REDIRECT_MISMATCH


def test_attempt_expires(service: TokenLifecycleService, clock: ManualClock) -> None:
    pkce, code = _authorize(service)
    clock.advance(601)
    with pytest.raises(InvalidGrantError) as exc_info:
        service.exchange_code(code=code, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT)
    assert exc_info.value.reason == CODE_INVALID


def test_attempt_valid_just_before_expiry(service: TokenLifecycleService, clock: ManualClock) -> None:
    pkce, code = _authorize(service)
    clock.advance(590)
    service.exchange_code(code=code, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT)


def test_tampered_code_is_rejected(service: TokenLifecycleService) -> None:
    pkce, code = _authorize(service)
    text = b64url_decode(code).decode()
    tampered = b64url_encode((text[:-1] + ("0" if text[-1] != "0" else "1")).encode())
    with pytest.raises(InvalidGrantError) as exc_info:
        service.exchange_code(code=tampered, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT)
    assert exc_info.value.reason == CODE_INVALID


def test_unlisted_redirect_rejected_before_binding(service: TokenLifecycleService) -> None:
    with pytest.raises(InvalidRedirectError):
        _authorize(service, "https://evil.example/cb")
    assert service.flow.pending_attempts() == 0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"subject": ""},
        {"code_challenge_method": "plain"},
        {"code_challenge": "too-short"},
    ],
)
def test_authorize_rejects_bad_parameters(service: TokenLifecycleService, kwargs: dict) -> None:
    params = {
        "subject": "user-1",
        "redirect_uri": REDIRECT,
        "code_challenge": generate_pkce_pair().code_challenge,
        **kwargs,
    }
    with pytest.raises(InvalidParameterError):
        service.authorize(**params)


def test_cleanup_sweeps_stale_attempts(service: TokenLifecycleService, clock: ManualClock) -> None:
    _authorize(service)
    _authorize(service)
    assert service.flow.pending_attempts() == 2
    clock.advance(601)
    service.cleanup()
    assert service.flow.pending_attempts() == 0


# --------------------------------------------------------------------------- #
# Untrusted text                                                              #
# --------------------------------------------------------------------------- #
def test_surrogate_redirect_on_exchange_is_a_mismatch(service: TokenLifecycleService) -> None:
    pkce, code = _authorize(service)
    with pytest.raises(InvalidGrantError) as exc_info:
        service.exchange_code(
            code=code, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT + LONE_SURROGATE
        )
    assert exc_info.value.reason == REDIRECT_MISMATCH


def test_surrogate_code_is_invalid(service: TokenLifecycleService) -> None:
    pkce, _ = _authorize(service)
    with pytest.raises(InvalidGrantError) as exc_info:
        service.exchange_code(code=LONE_SURROGATE, code_verifier=pkce.code_verifier, redirect_uri=REDIRECT)
    assert exc_info.value.reason == CODE_INVALID


def test_surrogate_redirect_on_authorize_is_rejected(service: TokenLifecycleService) -> None:
    with pytest.raises(InvalidRedirectError):
        _authorize(service, REDIRECT + LONE_SURROGATE)


# --------------------------------------------------------------------------- #
# Runtime whitelist                                                           #
# --------------------------------------------------------------------------- #
def test_redirect_added_at_runtime_can_be_used(service: TokenLifecycleService) -> None:
    new_cb = "https://new-client.example/cb"
    assert service.validate_redirect_uri(new_cb) is False
    assert service.add_redirect_uri(new_cb) is True
    assert new_cb in service.allowed_redirect_uris()

    pkce, code = _authorize(service, new_cb)
    tokens = service.exchange_code(code=code, code_verifier=pkce.code_verifier, redirect_uri=new_cb)
    assert service.verify_access_token(tokens.access_token)["sub"] == "user-1"


def test_removed_redirect_is_refused(service: TokenLifecycleService) -> None:
    assert service.remove_redirect_uri(REDIRECT) is True
    assert REDIRECT not in service.allowed_redirect_uris()
    assert service.validate_redirect_uri(REDIRECT) is False
    with pytest.raises(InvalidRedirectError):
        _authorize(service)


def test_unsafe_redirect_cannot_be_added(service: TokenLifecycleService) -> None:
    with pytest.raises(InvalidRedirectError):
        service.add_redirect_uri("javascript:alert(1)")
    assert service.allowed_redirect_uris() == ("http://localhost:3000/callback", REDIRECT)
