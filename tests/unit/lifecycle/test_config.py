"""Unit tests for TokenConfig validation and environment loading."""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from oauth_guard.lifecycle.config import TokenConfig
from oauth_guard.lifecycle.errors import ConfigurationError
from oauth_guard.utils.environment import env_list, is_production_env, parse_duration

_ENV_VARS = (
    "OAUTH_GUARD_JWT_SECRET",
    "OAUTH_GUARD_JWT_REFRESH_SECRET",
    "OAUTH_GUARD_ISSUER",
    "OAUTH_GUARD_AUDIENCE",
    "OAUTH_GUARD_ACCESS_TTL",
    "OAUTH_GUARD_REFRESH_TTL",
    "OAUTH_GUARD_AUTH_ATTEMPT_TTL",
    "OAUTH_GUARD_REDIRECT_URIS",
    "OAUTH_GUARD_ENV",
    "OAUTH_GUARD_PRODUCTION",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


# --------------------------------------------------------------------------- #
# parse_duration / env helpers                                                #
# --------------------------------------------------------------------------- #
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("900", timedelta(seconds=900)),
        ("900s", timedelta(seconds=900)),
        ("15m", timedelta(minutes=15)),
        ("12h", timedelta(hours=12)),
        ("30d", timedelta(days=30)),
        ("1500ms", timedelta(milliseconds=1500)),
        (" 7d ", timedelta(days=7)),
    ],
)
def test_parse_duration(raw: str, expected: timedelta) -> None:
    assert parse_duration(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "15x", "-5m", "1.5h", "m"])
def test_parse_duration_rejects_garbage(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_duration(raw)


def test_env_list_keeps_items_verbatim(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("X_URIS", " https://A.example/cb , ,http://localhost:3000/cb ")
    assert env_list("X_URIS") == ("https://A.example/cb", "http://localhost:3000/cb")
    assert env_list("X_UNSET") == ()


@pytest.mark.parametrize(
    "env, flag, expected",
    [
        (None, None, False),
        ("production", None, True),
        ("PROD", None, True),
        ("staging", None, False),
        ("production", "false", False),
        (None, "yes", True),
    ],
)
def test_is_production_env(
    monkeypatch: pytest.MonkeyPatch, env: str | None, flag: str | None, expected: bool
) -> None:
    if env is not None:
        monkeypatch.setenv("OAUTH_GUARD_ENV", env)
    if flag is not None:
        monkeypatch.setenv("OAUTH_GUARD_PRODUCTION", flag)
    assert is_production_env() is expected


# --------------------------------------------------------------------------- #
# TokenConfig                                                                 #
# --------------------------------------------------------------------------- #
def test_defaults() -> None:
    cfg = TokenConfig(secret="s" * 32)
    assert cfg.access_ttl == timedelta(minutes=15)
    assert cfg.refresh_ttl == timedelta(days=30)
    assert cfg.auth_attempt_ttl == timedelta(minutes=10)
    assert cfg.max_token_ttl == timedelta(days=30)
    assert cfg.code_secret == cfg.secret
    assert cfg.redirect_whitelist == ()
    assert cfg.is_production is False


def test_whitelist_is_frozen_to_tuple() -> None:
    cfg = TokenConfig(secret="s" * 32, redirect_whitelist=["https://a.example/cb"])  # type: ignore[arg-type]
    assert cfg.redirect_whitelist == ("https://a.example/cb",)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"secret": ""},
        {"secret": "s" * 32, "pkce_method": "plain"},
        {"secret": "s" * 32, "access_ttl": timedelta(0)},
        {"secret": "s" * 32, "refresh_ttl": timedelta(seconds=-1)},
        {"secret": "s" * 32, "access_ttl": timedelta(hours=2), "refresh_ttl": timedelta(hours=1)},
    ],
)
def test_invalid_config(kwargs: dict) -> None:
    with pytest.raises(ConfigurationError):
        TokenConfig(**kwargs)


def test_short_secret_warns(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="oauth-guard.lifecycle.config"):
        TokenConfig(secret="short")
    assert "shorter than 32 characters" in caplog.text


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OAUTH_GUARD_JWT_SECRET", "e" * 40)
    monkeypatch.setenv("OAUTH_GUARD_JWT_REFRESH_SECRET", "r" * 40)
    monkeypatch.setenv("OAUTH_GUARD_ACCESS_TTL", "5m")
    monkeypatch.setenv("OAUTH_GUARD_REFRESH_TTL", "7d")
    monkeypatch.setenv("OAUTH_GUARD_ISSUER", "https://auth.example")
    monkeypatch.setenv("OAUTH_GUARD_REDIRECT_URIS", "https://app.example/cb,http://localhost:3000/cb")
    monkeypatch.setenv("OAUTH_GUARD_ENV", "production")

    cfg = TokenConfig.from_env()
    assert cfg.secret == "e" * 40
    assert cfg.code_secret == "r" * 40
    assert cfg.access_ttl == timedelta(minutes=5)
    assert cfg.refresh_ttl == timedelta(days=7)
    assert cfg.auth_attempt_ttl == timedelta(minutes=10)
    assert cfg.issuer == "https://auth.example"
    assert cfg.audience == "oauth-guard-api"
    assert cfg.redirect_whitelist == ("https://app.example/cb", "http://localhost:3000/cb")
    assert cfg.is_production is True


def test_from_env_requires_secret() -> None:
    with pytest.raises(ConfigurationError):
        TokenConfig.from_env()


def test_from_env_rejects_bad_duration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("OAUTH_GUARD_JWT_SECRET", "e" * 40)
    monkeypatch.setenv("OAUTH_GUARD_ACCESS_TTL", "soon")
    with pytest.raises(ConfigurationError):
        TokenConfig.from_env()


def test_from_env_warns_on_empty_whitelist(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    monkeypatch.setenv("OAUTH_GUARD_JWT_SECRET", "e" * 40)
    with caplog.at_level(logging.WARNING, logger="oauth-guard.lifecycle.config"):
        cfg = TokenConfig.from_env()
    assert cfg.redirect_whitelist == ()
    assert "OAUTH_GUARD_REDIRECT_URIS is empty" in caplog.text
