"""Polling waits using tenacity.

A wait evaluates a caller-supplied condition every ``poll_interval`` seconds
until it holds or ``timeout`` elapses. Conditions that raise are treated as
"not yet": a target that is briefly absent should not abort the wait.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Optional, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception,
    retry_if_result,
    wait_fixed,
)

from flakeguard.domain.errors import Cancelled, WaitTimeout
from flakeguard.domain.models.wait_spec import WaitSpec
from flakeguard.infrastructure.cancellation import cancellable_sleep, raise_if_cancelled
from flakeguard.infrastructure.retry import Clock, stop_at_deadline
from flakeguard.infrastructure.sequence import next_sequence_id

Condition = Callable[[], Any]

_MISSING = object()


def _not_met(result: Any) -> bool:
    return not result


def _is_transient(failure: BaseException) -> bool:
    # Cancellation and interpreter exits always propagate
    return isinstance(failure, Exception) and not isinstance(failure, Cancelled)


class _WaitRun:
    """Bookkeeping and logging for one polling wait."""

    def __init__(
        self,
        spec: WaitSpec,
        log: Union[logging.Logger, logging.LoggerAdapter],
        clock: Clock,
        cancel_event: Optional[threading.Event],
    ) -> None:
        self.spec = spec
        self.log = log
        self.clock = clock
        self.cancel_event = cancel_event
        self.run_id = next_sequence_id("wait")
        self.started = clock()
        self.deadline = self.started + spec.timeout
        self.polls = 0
        self.log.debug(f"Wait until: {spec.description}", extra=self._extra("started"))

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started

    def _extra(self, outcome: str) -> dict:
        return {
            "run_id": self.run_id,
            "description": self.spec.description,
            "attempt": self.polls,
            "outcome": outcome,
            "elapsed": self.elapsed,
        }

    def _met(self) -> bool:
        self.log.debug(
            f"Condition met after {self.elapsed:.3f}s: {self.spec.description}",
            extra=self._extra("met"),
        )
        return True

    def check(self, condition: Condition) -> bool:
        raise_if_cancelled(self.cancel_event, self.spec.description)
        self.polls += 1
        if condition():
            return self._met()
        return False

    async def check_async(self, condition: Condition) -> bool:
        raise_if_cancelled(self.cancel_event, self.spec.description)
        self.polls += 1
        result = condition()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return self._met()
        return False

    def before_sleep(self, retry_state: RetryCallState) -> None:
        if retry_state.outcome is not None and retry_state.outcome.failed:
            self.log.debug(
                f"Check {self.polls} raised, treating as not met: {retry_state.outcome.exception()}",
                extra=self._extra("error"),
            )

    def timed_out(self, retry_state: RetryCallState) -> None:
        """retry_error_callback: the deadline passed without the condition holding."""
        last_failure = None
        if retry_state.outcome is not None and retry_state.outcome.failed:
            last_failure = retry_state.outcome.exception()
        self.log.error(
            f"Timeout waiting for: {self.spec.description} after {self.polls} checks",
            extra=self._extra("timeout"),
        )
        raise WaitTimeout(self.spec.description, self.spec.timeout, self.elapsed, last_failure) from last_failure


def _strategy(run: _WaitRun, clock: Clock) -> dict:
    return {
        "stop": stop_at_deadline(run.deadline, clock),
        "wait": wait_fixed(run.spec.poll_interval),
        "retry": retry_if_result(_not_met) | retry_if_exception(_is_transient),
        "before_sleep": run.before_sleep,
        "retry_error_callback": run.timed_out,
    }


class Poller:
    """Blocking condition waits on the calling thread."""

    def __init__(
        self,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Clock = time.monotonic,
        cancel_event: Optional[threading.Event] = None,
    ):
        """Initialize poller

        Args:
            logger: Logger for wait events (defaults to this module's logger)
            sleep: Sleep function (defaults to tenacity's nap.sleep)
            clock: Monotonic clock used for deadlines and elapsed times
            cancel_event: Event that cancels the wait when set
        """
        self.logger = logger or logging.getLogger(__name__)
        self.sleep = sleep
        self.clock = clock
        self.cancel_event = cancel_event

    def _poll(
        self,
        condition: Condition,
        spec: WaitSpec,
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> None:
        run = _WaitRun(spec, self.logger, self.clock, self.cancel_event)

        def _sleep_between(seconds: float) -> None:
            cancellable_sleep(seconds, self.cancel_event, spec.description, sleep or self.sleep)

        retrying = Retrying(sleep=_sleep_between, **_strategy(run, self.clock))
        retrying(run.check, condition)

    def wait_until(self, condition: Condition, spec: Optional[WaitSpec] = None) -> None:
        """Wait until ``condition()`` returns a truthy value.

        Raises:
            WaitTimeout: Condition did not hold within ``spec.timeout``
            Cancelled: ``cancel_event`` was set, or the condition raised Cancelled
        """
        self._poll(condition, spec or WaitSpec())

    def wait_until_absent(self, is_present: Condition, spec: Optional[WaitSpec] = None) -> None:
        """Wait until ``is_present()`` is falsy.

        A target that is already gone, or whose presence check raises because
        it no longer exists, counts as absent.
        """
        spec = spec or WaitSpec(description="target to disappear")

        def _absent() -> bool:
            try:
                return not is_present()
            except Cancelled:
                raise
            except Exception as e:
                self.logger.debug(f"Presence check failed, treating as absent: {e}")
                return True

        self._poll(_absent, spec)

    def wait_for_value(self, supplier: Callable[[], Any], expected: Any, spec: Optional[WaitSpec] = None) -> None:
        """Wait until ``supplier()`` equals ``expected``."""
        spec = spec or WaitSpec(description=f"value to equal {expected!r}")
        self._poll(lambda: supplier() == expected, spec)

    def wait_for_count(self, counter: Callable[[], int], expected: int, spec: Optional[WaitSpec] = None) -> None:
        """Wait until ``counter()`` reports exactly ``expected`` items."""
        spec = spec or WaitSpec(description=f"{expected} items to appear")
        self.wait_for_value(counter, expected, spec)

    def wait_until_stable(
        self,
        sampler: Callable[[], Any],
        spec: Optional[WaitSpec] = None,
        required_checks: int = 3,
    ) -> None:
        """Wait until ``sampler()`` returns the same value ``required_checks`` times in a row.

        Useful for content that is still animating or streaming in.
        """
        if required_checks < 1:
            raise ValueError("required_checks must be at least 1")
        spec = spec or WaitSpec(poll_interval=0.1, description="value to stabilize")
        last = _MISSING
        stable = 0

        def _settled() -> bool:
            nonlocal last, stable
            current = sampler()
            stable = stable + 1 if current == last else 0
            last = current
            return stable >= required_checks

        self._poll(_settled, spec)

    def wait_for_event(self, event: threading.Event, spec: Optional[WaitSpec] = None) -> None:
        """Wait until ``event`` is set, waking as soon as it is."""
        self._poll(event.is_set, spec or WaitSpec(description="event"), sleep=event.wait)


class AsyncPoller:
    """Coroutine flavour of Poller; conditions may be sync or async callables.

    Sleeps with asyncio.sleep by default, so cancelling the task interrupts
    the wait and propagates asyncio.CancelledError untouched.
    """

    def __init__(
        self,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Clock = time.monotonic,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.logger = logger or logging.getLogger(__name__)
        self.sleep = sleep or asyncio.sleep
        self.clock = clock
        self.cancel_event = cancel_event

    async def wait_until(self, condition: Condition, spec: Optional[WaitSpec] = None) -> None:
        """Wait until ``condition()`` (or its awaited result) is truthy."""
        spec = spec or WaitSpec()
        run = _WaitRun(spec, self.logger, self.clock, self.cancel_event)

        async def _sleep_between(seconds: float) -> None:
            raise_if_cancelled(self.cancel_event, spec.description)
            await self.sleep(seconds)
            raise_if_cancelled(self.cancel_event, spec.description)

        retrying = AsyncRetrying(sleep=_sleep_between, **_strategy(run, self.clock))
        await retrying(run.check_async, condition)

    async def wait_until_absent(self, is_present: Condition, spec: Optional[WaitSpec] = None) -> None:
        """Wait until ``is_present()`` is falsy; a failing presence check counts as absent."""

        async def _absent() -> bool:
            try:
                result = is_present()
                if inspect.isawaitable(result):
                    result = await result
                return not result
            except Cancelled:
                raise
            except Exception as e:
                self.logger.debug(f"Presence check failed, treating as absent: {e}")
                return True

        await self.wait_until(_absent, spec or WaitSpec(description="target to disappear"))


def wait_until(
    condition: Condition,
    timeout: float = 30.0,
    description: str = "condition",
    poll_interval: float = 0.5,
) -> None:
    """Poll ``condition`` until it holds, raising WaitTimeout after ``timeout`` seconds."""
    Poller().wait_until(condition, WaitSpec(timeout=timeout, poll_interval=poll_interval, description=description))


def wait_until_absent(
    is_present: Condition,
    timeout: float = 30.0,
    description: str = "target to disappear",
    poll_interval: float = 0.5,
) -> None:
    """Poll until ``is_present`` is falsy; an already-absent target is success."""
    Poller().wait_until_absent(
        is_present, WaitSpec(timeout=timeout, poll_interval=poll_interval, description=description)
    )
