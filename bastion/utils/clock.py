"""
Bastion - Clock
===============

Time source injected into every stateful component.

DESIGN:
    Sliding windows, lockdown timestamps, correlation windows and the
    scheduler all read time through a Clock instead of calling time.time()
    directly, so tests can move time forward with ManualClock.advance()
    instead of sleeping.

Author: Bastion Maintainers
"""

import time


class Clock:
    """Wall clock in float seconds since the epoch."""

    def now(self) -> float:
        return time.time()


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> float:
        self._now += seconds
        return self._now

    def set(self, value: float) -> None:
        self._now = value


SYSTEM_CLOCK = Clock()


__all__ = ["Clock", "ManualClock", "SYSTEM_CLOCK"]
