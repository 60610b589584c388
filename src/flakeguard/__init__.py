"""Polling waits and retry-with-backoff helpers for end-to-end UI tests"""

from flakeguard.domain.errors import (
    Cancelled,
    FlakeguardError,
    NonRetryableFailure,
    RetryExhausted,
    WaitTimeout,
)
from flakeguard.domain.models import AttemptOutcome, RetryPolicy, WaitSpec
from flakeguard.infrastructure.poller import AsyncPoller, Poller, wait_until, wait_until_absent
from flakeguard.infrastructure.retry import (
    AsyncRetrier,
    Retrier,
    retried,
    retry,
    retry_immediately,
    retry_on,
    retry_void,
    retry_with_fixed_delay,
    retry_with_jitter,
    retry_with_linear_backoff,
    retry_with_timeout,
)

__all__ = [
    "AsyncPoller",
    "AsyncRetrier",
    "AttemptOutcome",
    "Cancelled",
    "FlakeguardError",
    "NonRetryableFailure",
    "Poller",
    "Retrier",
    "RetryExhausted",
    "RetryPolicy",
    "WaitSpec",
    "WaitTimeout",
    "retried",
    "retry",
    "retry_immediately",
    "retry_on",
    "retry_void",
    "retry_with_fixed_delay",
    "retry_with_jitter",
    "retry_with_linear_backoff",
    "retry_with_timeout",
    "wait_until",
    "wait_until_absent",
]
