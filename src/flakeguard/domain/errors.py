"""Failures raised by retry and wait helpers.

Every exit path of a retry or wait either returns a value or raises one of
these, so a failing test reports what it was waiting for and why it gave up.
"""

from typing import Optional


class FlakeguardError(Exception):
    """Base class for flakeguard failures."""

    pass


class RetryExhausted(FlakeguardError):
    """All allowed attempts (or the time budget) were used without success."""

    def __init__(self, description: str, attempts: int, last_failure: Optional[BaseException]):
        self.description = description
        self.attempts = attempts
        self.last_failure = last_failure
        message = f"Failed after {attempts} attempt{'s' if attempts != 1 else ''}: {description}"
        if last_failure is not None:
            message += f" (last error: {type(last_failure).__name__}: {last_failure})"
        super().__init__(message)


class NonRetryableFailure(FlakeguardError):
    """The operation failed with an error the policy does not retry.

    The original error is kept on ``last_failure`` and as ``__cause__``.
    """

    def __init__(self, description: str, attempts: int, last_failure: BaseException):
        self.description = description
        self.attempts = attempts
        self.last_failure = last_failure
        super().__init__(
            f"Non-retryable {type(last_failure).__name__} on attempt {attempts}: "
            f"{description} ({last_failure})"
        )


class WaitTimeout(FlakeguardError):
    """A polling wait did not see its condition before the deadline."""

    def __init__(
        self,
        description: str,
        timeout: float,
        elapsed: float,
        last_failure: Optional[BaseException] = None,
    ):
        self.description = description
        self.timeout = timeout
        self.elapsed = elapsed
        self.last_failure = last_failure
        message = f"Timeout waiting for: {description} (timeout {timeout:.3f}s, waited {elapsed:.3f}s)"
        if last_failure is not None:
            message += f"; last check raised {type(last_failure).__name__}: {last_failure}"
        super().__init__(message)


class Cancelled(FlakeguardError):
    """Cooperative cancellation was observed while waiting or retrying."""

    def __init__(self, description: str):
        self.description = description
        super().__init__(f"Cancelled: {description}")
