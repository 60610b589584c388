"""Retry utilities using tenacity.

The Retrier runs a caller-supplied operation until it succeeds, fails with a
non-retryable error, or runs out of attempts or time. It knows nothing about
browsers or pages: page objects hand it closures.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar, Union

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_incrementing,
    wait_random,
)
from tenacity.stop import stop_base
from tenacity.wait import wait_base

from flakeguard.domain.errors import Cancelled, NonRetryableFailure, RetryExhausted
from flakeguard.domain.models.attempt import AttemptOutcome
from flakeguard.domain.models.policy import RetryPolicy
from flakeguard.infrastructure.cancellation import cancellable_sleep, raise_if_cancelled
from flakeguard.infrastructure.sequence import next_sequence_id

T = TypeVar("T")
Clock = Callable[[], float]
AttemptObserver = Callable[[AttemptOutcome], Any]


class stop_at_deadline(stop_base):
    """Stop once the clock reaches a fixed deadline."""

    def __init__(self, deadline: float, clock: Clock) -> None:
        self.deadline = deadline
        self.clock = clock

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.clock() >= self.deadline


class wait_within_deadline(wait_base):
    """Clamp another wait strategy so it never sleeps past the deadline."""

    def __init__(self, wait: wait_base, deadline: float, clock: Clock) -> None:
        self.wait = wait
        self.deadline = deadline
        self.clock = clock

    def __call__(self, retry_state: RetryCallState) -> float:
        remaining = self.deadline - self.clock()
        return max(0.0, min(self.wait(retry_state), remaining))


def build_wait(policy: RetryPolicy) -> wait_base:
    """Create the tenacity wait strategy for a policy.

    Exponential: initial_delay * (backoff_multiplier ^ (attempt - 1)), capped
    at max_delay. Linear: initial_delay + linear_increment * (attempt - 1).
    Jitter adds a random [0, jitter] on top of either.
    """
    if policy.linear_increment is not None:
        wait = wait_incrementing(
            start=policy.initial_delay,
            increment=policy.linear_increment,
            max=policy.max_delay,
        )
    else:
        wait = wait_exponential(
            multiplier=policy.initial_delay,
            exp_base=policy.backoff_multiplier,
            min=0,
            max=policy.max_delay,
        )
    if policy.jitter > 0:
        wait = wait + wait_random(0, policy.jitter)
    return wait


class _RetryRun:
    """Bookkeeping and logging for one retry sequence."""

    def __init__(
        self,
        policy: RetryPolicy,
        log: Union[logging.Logger, logging.LoggerAdapter],
        clock: Clock,
        cancel_event: Optional[threading.Event],
        on_attempt: Optional[AttemptObserver],
    ) -> None:
        self.policy = policy
        self.log = log
        self.clock = clock
        self.cancel_event = cancel_event
        self.on_attempt = on_attempt
        self.run_id = next_sequence_id("retry")
        self.started = clock()
        self.attempts = 0
        self.last_failure: Optional[BaseException] = None
        self.rejected_failure: Optional[BaseException] = None
        self.exhausted_error: Optional[RetryExhausted] = None

    @property
    def budget(self) -> str:
        if self.policy.is_time_bounded:
            return f"within {self.policy.total_timeout:.3f}s"
        return f"/{self.policy.max_attempts}"

    def _extra(self, outcome: str) -> dict:
        return {
            "run_id": self.run_id,
            "description": self.policy.description,
            "attempt": self.attempts,
            "outcome": outcome,
            "elapsed": self.clock() - self.started,
        }

    def _begin(self) -> None:
        raise_if_cancelled(self.cancel_event, self.policy.description)
        self.attempts += 1
        self.log.debug(
            f"Attempt {self.attempts}{self.budget}: {self.policy.description}",
            extra=self._extra("started"),
        )

    def _succeeded(self) -> None:
        if self.attempts > 1:
            self.log.info(
                f"Success on attempt {self.attempts}: {self.policy.description}",
                extra=self._extra("succeeded"),
            )
        self._report(True, None)

    def _failed(self, failure: BaseException) -> None:
        self.last_failure = failure
        self._report(False, failure)

    def _report(self, succeeded: bool, failure: Optional[BaseException]) -> None:
        if self.on_attempt is not None:
            self.on_attempt(
                AttemptOutcome(
                    attempt=self.attempts,
                    elapsed=self.clock() - self.started,
                    succeeded=succeeded,
                    failure=failure,
                )
            )

    def call(self, operation: Callable[[], T]) -> T:
        self._begin()
        try:
            result = operation()
        except BaseException as e:
            self._failed(e)
            raise
        self._succeeded()
        return result

    async def call_async(self, operation: Callable[[], Awaitable[T]]) -> T:
        self._begin()
        try:
            result = await operation()
        except BaseException as e:
            self._failed(e)
            raise
        self._succeeded()
        return result

    def before_sleep(self, retry_state: RetryCallState) -> None:
        failure = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self.log.warning(
            f"Attempt {self.attempts} failed, retrying in {delay:.3f}s: {failure}",
            extra=self._extra("retrying"),
        )
        if self.policy.on_retry is not None:
            self.policy.on_retry(failure)

    def should_retry(self, failure: BaseException) -> bool:
        if self.policy.is_retryable(failure):
            return True
        self.rejected_failure = failure
        return False

    def exhausted(self, retry_state: RetryCallState) -> None:
        """retry_error_callback: the stop condition fired after a failure."""
        failure = retry_state.outcome.exception() if retry_state.outcome else self.last_failure
        if self.policy.is_time_bounded:
            self.log.error(
                f"Timeout exceeded ({self.policy.total_timeout:.3f}s) after "
                f"{self.attempts} attempts: {self.policy.description}",
                extra=self._extra("exhausted"),
            )
        else:
            self.log.error(
                f"All {self.attempts} attempts failed: {self.policy.description}",
                extra=self._extra("exhausted"),
            )
        self._notify_exhausted(failure)
        self.exhausted_error = RetryExhausted(self.policy.description, self.attempts, failure)
        raise self.exhausted_error from failure

    def non_retryable(self, failure: BaseException) -> NonRetryableFailure:
        self.log.error(
            f"Non-retryable {type(failure).__name__}, aborting: {self.policy.description}",
            extra=self._extra("aborted"),
        )
        self._notify_exhausted(failure)
        return NonRetryableFailure(self.policy.description, self.attempts, failure)

    def _notify_exhausted(self, failure: Optional[BaseException]) -> None:
        if self.policy.on_exhausted is not None:
            self.policy.on_exhausted(failure)

    def translate(self, error: Exception) -> Exception:
        """Map an error escaping tenacity to what the caller should see."""
        if isinstance(error, Cancelled) or error is self.exhausted_error:
            return error
        if error is self.rejected_failure:
            return self.non_retryable(error)
        # Raised by a callback rather than the operation
        return error


class Retrier:
    """Runs fallible operations under a RetryPolicy.

    All sleeping happens on the calling thread. Setting ``cancel_event``
    aborts the current sleep and raises Cancelled without further attempts.
    """

    def __init__(
        self,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        sleep: Optional[Callable[[float], None]] = None,
        clock: Clock = time.monotonic,
        cancel_event: Optional[threading.Event] = None,
        on_attempt: Optional[AttemptObserver] = None,
    ):
        """Initialize retrier

        Args:
            logger: Logger for attempt events (defaults to this module's logger)
            sleep: Sleep function (defaults to tenacity's nap.sleep)
            clock: Monotonic clock used for time budgets and elapsed times
            cancel_event: Event that cancels the sequence when set
            on_attempt: Observer called with an AttemptOutcome after each attempt
        """
        self.logger = logger or logging.getLogger(__name__)
        self.sleep = sleep
        self.clock = clock
        self.cancel_event = cancel_event
        self.on_attempt = on_attempt

    def _start(self, policy: Optional[RetryPolicy]) -> _RetryRun:
        return _RetryRun(
            (policy or RetryPolicy()).validated(),
            self.logger,
            self.clock,
            self.cancel_event,
            self.on_attempt,
        )

    def _strategy(self, run: _RetryRun) -> dict:
        policy = run.policy
        if policy.is_time_bounded:
            # The last sleep is clipped to the deadline and one more attempt
            # runs there; the stop check after that attempt ends the sequence.
            deadline = run.started + policy.total_timeout
            stop = stop_at_deadline(deadline, self.clock)
            wait = wait_within_deadline(build_wait(policy), deadline, self.clock)
        else:
            stop = stop_after_attempt(policy.max_attempts)
            wait = build_wait(policy)
        return {
            "stop": stop,
            "wait": wait,
            "retry": retry_if_exception(run.should_retry),
            "before_sleep": run.before_sleep,
            "retry_error_callback": run.exhausted,
        }

    def _sleep_between(self, run: _RetryRun, seconds: float) -> None:
        cancellable_sleep(seconds, self.cancel_event, run.policy.description, self.sleep)

    def execute(self, operation: Callable[[], T], policy: Optional[RetryPolicy] = None) -> T:
        """Run ``operation`` until it succeeds or the policy gives up.

        Args:
            operation: Zero-argument callable, safe to call repeatedly
            policy: Retry policy (defaults to RetryPolicy())

        Returns:
            Whatever ``operation`` returned on its first successful attempt

        Raises:
            RetryExhausted: Attempt or time budget used up
            NonRetryableFailure: Operation raised an error outside the retryable kinds
            Cancelled: ``cancel_event`` was set
            ValidationError: ``policy`` has max_delay below initial_delay
        """
        run = self._start(policy)
        retrying = Retrying(
            sleep=functools.partial(self._sleep_between, run),
            **self._strategy(run),
        )
        try:
            return retrying(run.call, operation)
        except Exception as e:
            error = run.translate(e)
            if error is e:
                raise
            raise error from e

    def retry_void(self, operation: Callable[[], Any], policy: Optional[RetryPolicy] = None) -> None:
        """Like execute(), for operations run only for their side effects."""
        self.execute(operation, policy)


class AsyncRetrier(Retrier):
    """Coroutine flavour of Retrier built on tenacity.AsyncRetrying.

    Sleeps with asyncio.sleep by default, so cancelling the task interrupts
    the sleep and propagates asyncio.CancelledError untouched.
    """

    def __init__(
        self,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Clock = time.monotonic,
        cancel_event: Optional[threading.Event] = None,
        on_attempt: Optional[AttemptObserver] = None,
    ):
        super().__init__(logger=logger, clock=clock, cancel_event=cancel_event, on_attempt=on_attempt)
        self.async_sleep = sleep or asyncio.sleep

    async def _sleep_between_async(self, run: _RetryRun, seconds: float) -> None:
        raise_if_cancelled(self.cancel_event, run.policy.description)
        if seconds > 0:
            await self.async_sleep(seconds)
        raise_if_cancelled(self.cancel_event, run.policy.description)

    async def execute(  # type: ignore[override]
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """Await ``operation()`` until it succeeds or the policy gives up."""
        run = self._start(policy)
        retrying = AsyncRetrying(
            sleep=functools.partial(self._sleep_between_async, run),
            **self._strategy(run),
        )
        try:
            return await retrying(run.call_async, operation)
        except Exception as e:
            error = run.translate(e)
            if error is e:
                raise
            raise error from e

    async def retry_void(  # type: ignore[override]
        self,
        operation: Callable[[], Awaitable[Any]],
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        await self.execute(operation, policy)


def _policy(policy: Optional[RetryPolicy], options: dict) -> RetryPolicy:
    policy = policy or RetryPolicy()
    return policy.with_options(**options) if options else policy


def retry(operation: Callable[[], T], policy: Optional[RetryPolicy] = None, **options: Any) -> T:
    """Retry ``operation`` with exponential backoff.

    Keyword options override fields of ``policy``, e.g.
    ``retry(send, description="send message", max_attempts=5)``.
    """
    return Retrier().execute(operation, _policy(policy, options))


def retry_void(operation: Callable[[], Any], policy: Optional[RetryPolicy] = None, **options: Any) -> None:
    """Retry a side-effect-only operation with exponential backoff."""
    Retrier().retry_void(operation, _policy(policy, options))


def retry_with_fixed_delay(
    operation: Callable[[], T], max_attempts: int, delay: float, description: str = "operation"
) -> T:
    """Retry with the same delay between every attempt."""
    return Retrier().execute(operation, RetryPolicy.fixed(max_attempts, delay, description=description))


def retry_with_linear_backoff(
    operation: Callable[[], T], max_attempts: int, increment: float, description: str = "operation"
) -> T:
    """Retry with delays of increment, 2*increment, 3*increment, ..."""
    return Retrier().execute(operation, RetryPolicy.linear(max_attempts, increment, description=description))


def retry_with_jitter(
    operation: Callable[[], T], max_attempts: int, max_jitter: float = 0.5, description: str = "operation"
) -> T:
    """Exponential backoff plus random jitter to spread out concurrent callers."""
    return Retrier().execute(
        operation, RetryPolicy.jittered(max_attempts, max_jitter, description=description)
    )


def retry_on(operation: Callable[[], T], *kinds: type, description: str = "operation") -> T:
    """Retry only when ``operation`` raises one of ``kinds``."""
    return Retrier().execute(operation, RetryPolicy.retry_on(*kinds, description=description))


def retry_immediately(operation: Callable[[], T], max_attempts: int, description: str = "operation") -> T:
    """Retry without any delay, for quick operations."""
    return Retrier().execute(operation, RetryPolicy.immediate(max_attempts, description=description))


def retry_with_timeout(operation: Callable[[], T], total_timeout: float, description: str = "operation") -> T:
    """Keep retrying with backoff until ``total_timeout`` seconds have passed."""
    return Retrier().execute(operation, RetryPolicy.time_bounded(total_timeout, description=description))


def retried(policy: Optional[RetryPolicy] = None, **options: Any) -> Callable[[Callable], Callable]:
    """Decorator form: every call of the wrapped function is retried.

    Works for plain functions and coroutine functions.
    """
    effective = _policy(policy, options)

    def decorator(func: Callable) -> Callable:
        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapped(*args: Any, **kwargs: Any) -> Any:
                return await AsyncRetrier().execute(lambda: func(*args, **kwargs), effective)

            return async_wrapped

        @functools.wraps(func)
        def wrapped(*args: Any, **kwargs: Any) -> Any:
            return Retrier().execute(lambda: func(*args, **kwargs), effective)

        return wrapped

    return decorator
