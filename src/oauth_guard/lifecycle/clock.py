"""Injectable time source for token lifecycle decisions.

Every expiry, retention and TTL comparison inside :mod:`oauth_guard.lifecycle`
goes through a :class:`Clock` so that tests can pin or advance time instead of
sleeping.  Production code uses :func:`default_clock`.

Example
-------
>>> from oauth_guard.lifecycle.clock import ManualClock
>>> clock = ManualClock(1_000.0)
>>> clock.advance(30)
>>> clock()
1030.0
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """Callable returning seconds since the UNIX epoch as ``float``."""

    def __call__(self) -> float: ...


def default_clock() -> float:
    """Wall-clock time via ``time.time()``."""
    return time.time()


class ManualClock:
    """Clock whose value only moves when told to."""

    def __init__(self, now: float = 0.0) -> None:
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
