"""Shared fixtures for lifecycle unit tests: frozen clock, config, service."""

from __future__ import annotations

import pytest

from oauth_guard.lifecycle.clock import ManualClock
from oauth_guard.lifecycle.config import TokenConfig
from oauth_guard.lifecycle.service import TokenLifecycleService
from oauth_guard.lifecycle.store import MemoryTokenStore

# 2023-11-14T22:13:20Z
FROZEN_NOW = 1_700_000_000.0


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock(FROZEN_NOW)


@pytest.fixture()
def config() -> TokenConfig:
    return TokenConfig(
        secret="unit-test-secret-0123456789abcdef0123456789",
        redirect_whitelist=(
            "https://app.example/cb",
            "http://localhost:3000/callback",
        ),
    )


@pytest.fixture()
def service(config: TokenConfig, clock: ManualClock) -> TokenLifecycleService:
    return TokenLifecycleService(config, store=MemoryTokenStore(), clock=clock)
