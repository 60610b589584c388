"""Shared fixtures: a fake monotonic clock whose sleep advances time."""

from __future__ import annotations

import pytest


class FakeClock:
    """Monotonic clock for tests; sleep() records the delay and moves time forward"""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    async def async_sleep(self, seconds: float) -> None:
        self.sleep(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def make_flaky(failures: int, exc_type: type = ValueError, result: object = "ok"):
    """Operation that raises ``exc_type`` ``failures`` times, then returns ``result``"""
    calls = {"n": 0}

    def operation():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise exc_type(f"boom {calls['n']}")
        return result

    return operation, calls
