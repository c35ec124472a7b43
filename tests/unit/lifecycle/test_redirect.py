"""Unit tests for redirect URI whitelist matching and protocol policy."""

from __future__ import annotations

import json

import pytest

from oauth_guard.lifecycle.errors import InvalidRedirectError
from oauth_guard.lifecycle.redirect import (
    RedirectWhitelist,
    has_secure_protocol,
    is_allowed,
    validate,
    validate_redirect_uri,
)

LOCAL_CB = "http://localhost:3000/callback"
PROD_CB = "https://example.com/callback"


# --------------------------------------------------------------------------- #
# Exact matching                                                              #
# --------------------------------------------------------------------------- #
@pytest.mark.parametrize(
    "candidate",
    [
        "http://localhost:3000/callback/extra",
        "http://localhost:3001/callback",
        "HTTP://LOCALHOST:3000/callback",
        "http://localhost:3000/callback?x=1",
        "http://localhost:3000/callback/",
        "http://localhost:3000/callbac",
        " http://localhost:3000/callback",
    ],
)
def test_exact_match_rejects_near_misses(candidate: str) -> None:
    whitelist = [LOCAL_CB]
    assert is_allowed(candidate, whitelist) is False
    assert validate_redirect_uri(candidate, whitelist, False) is False


def test_exact_literal_is_accepted() -> None:
    assert validate_redirect_uri(LOCAL_CB, [LOCAL_CB], False) is True
    assert validate(LOCAL_CB, [LOCAL_CB], False) == LOCAL_CB


def test_is_allowed_rejects_non_strings() -> None:
    assert is_allowed(None, [LOCAL_CB]) is False
    assert is_allowed("", [""]) is False


# --------------------------------------------------------------------------- #
# Protocol policy                                                             #
# --------------------------------------------------------------------------- #
def test_production_rejects_http_even_when_whitelisted() -> None:
    assert validate_redirect_uri(LOCAL_CB, [LOCAL_CB], True) is False
    with pytest.raises(InvalidRedirectError):
        validate(LOCAL_CB, [LOCAL_CB], True)


def test_production_accepts_whitelisted_https() -> None:
    assert validate_redirect_uri(PROD_CB, [PROD_CB], True) is True


@pytest.mark.parametrize(
    "candidate, expected",
    [
        ("https://example.com/cb", True),
        ("http://localhost:8080/cb", True),
        ("http://127.0.0.1:8080/cb", True),
        ("http://example.com/cb", False),
        ("http://localhost.evil.com/cb", False),
        ("javascript:alert(1)", False),
        ("data:text/html,hi", False),
        ("file:///etc/passwd", False),
        ("ftp://localhost/cb", False),
        ("myapp://oauth/callback", False),
        ("https://", False),
        ("https://example.com:99999/cb", False),
        ("not a url", False),
    ],
)
def test_development_protocol_policy(candidate: str, expected: bool) -> None:
    assert has_secure_protocol(candidate, is_production=False) is expected


@pytest.mark.parametrize(
    "candidate",
    ["javascript:alert(1)", "data:text/html,hi", "file:///tmp/x", "ftp://example.com/cb"],
)
def test_dangerous_schemes_rejected_even_if_whitelisted(candidate: str) -> None:
    for production in (True, False):
        assert validate_redirect_uri(candidate, [candidate], production) is False


def test_fragment_is_rejected() -> None:
    uri = "https://example.com/cb#frag"
    assert validate_redirect_uri(uri, [uri], True) is False


# --------------------------------------------------------------------------- #
# Runtime whitelist                                                           #
# --------------------------------------------------------------------------- #
def test_whitelist_add_and_remove() -> None:
    whitelist = RedirectWhitelist([LOCAL_CB])
    assert whitelist.add(PROD_CB) is True
    assert whitelist.add(PROD_CB) is False
    assert whitelist.snapshot() == (LOCAL_CB, PROD_CB)
    assert validate_redirect_uri(PROD_CB, whitelist, False) is True

    assert whitelist.remove(PROD_CB) is True
    assert whitelist.remove(PROD_CB) is False
    assert PROD_CB not in whitelist
    assert validate_redirect_uri(PROD_CB, whitelist, False) is False
    assert len(whitelist) == 1


@pytest.mark.parametrize(
    "uri",
    ["", None, "javascript:alert(1)", "https://example.com/cb#frag", "http://evil.example/cb"],
)
def test_whitelist_add_rejects_unsafe_uris(uri: object) -> None:
    whitelist = RedirectWhitelist()
    with pytest.raises(InvalidRedirectError):
        whitelist.add(uri)
    assert len(whitelist) == 0


def test_whitelist_add_follows_production_policy() -> None:
    whitelist = RedirectWhitelist(is_production=True)
    with pytest.raises(InvalidRedirectError):
        whitelist.add(LOCAL_CB)
    assert whitelist.add(PROD_CB) is True


def test_surrogate_candidate_is_rejected() -> None:
    assert validate_redirect_uri(json.loads('"https://example.com/\\ud800"'), [PROD_CB], False) is False
