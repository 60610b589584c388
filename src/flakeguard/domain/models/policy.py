"""RetryPolicy model - how a retry sequence spaces and bounds its attempts"""

from typing import Any, Callable, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, model_validator

from flakeguard.domain.config.retry import RetryConfig
from flakeguard.domain.errors import Cancelled

FailureCallback = Callable[[BaseException], Any]


class RetryPolicy(BaseModel):
    """Immutable retry configuration for a single call.

    Attributes:
        max_attempts: Attempts allowed, first call included (ignored with total_timeout)
        initial_delay: Delay before the first retry, in seconds
        backoff_multiplier: Growth factor between retries (1.0 = fixed delay)
        max_delay: Cap on any single computed delay, in seconds
        linear_increment: When set, delays grow by this amount instead of multiplying
        jitter: Random delay in [0, jitter] seconds added before each retry sleep
        total_timeout: Time budget in seconds; replaces max_attempts as the stop rule
        retryable_failure_kinds: Exception types worth retrying (None = every Exception)
        on_retry: Called with the failure before each retry sleep
        on_exhausted: Called with the last failure when the sequence gives up
        description: Label used in logs and error messages
    """

    max_attempts: int = Field(3, ge=1)
    initial_delay: float = Field(1.0, ge=0.0)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    max_delay: float = Field(30.0, ge=0.0)
    linear_increment: Optional[float] = Field(None, ge=0.0)
    jitter: float = Field(0.0, ge=0.0)
    total_timeout: Optional[float] = Field(None, ge=0.0)
    retryable_failure_kinds: Optional[Tuple[Type[BaseException], ...]] = None
    on_retry: Optional[FailureCallback] = None
    on_exhausted: Optional[FailureCallback] = None
    description: str = "operation"

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _max_delay_covers_initial_delay(self, info: ValidationInfo) -> "RetryPolicy":
        # with_options copies skip this check until validated() runs
        if info.context and info.context.get("defer_delay_check"):
            return self
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be greater than or equal to initial_delay")
        return self

    def _options(self) -> dict:
        return {name: getattr(self, name) for name in type(self).model_fields}

    def with_options(self, **changes: Any) -> "RetryPolicy":
        """Return a copy with the given fields replaced.

        Field bounds are checked immediately. The max_delay/initial_delay
        relation is checked by validated(), so chained options may be given
        in any order.
        """
        options = self._options()
        options.update(changes)
        return type(self).model_validate(options, context={"defer_delay_check": True})

    def validated(self) -> "RetryPolicy":
        """Return this policy after checking every invariant.

        Raises:
            ValidationError: If max_delay is below initial_delay
        """
        return type(self).model_validate(self._options())

    @property
    def is_time_bounded(self) -> bool:
        return self.total_timeout is not None

    def delay_for(self, attempt: int) -> float:
        """Delay (without jitter) slept after failed attempt ``attempt``."""
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        if self.linear_increment is not None:
            delay = self.initial_delay + self.linear_increment * (attempt - 1)
        else:
            try:
                delay = self.initial_delay * self.backoff_multiplier ** (attempt - 1)
            except OverflowError:
                return self.max_delay
        return min(delay, self.max_delay)

    def is_retryable(self, failure: BaseException) -> bool:
        """Check whether a failure may be retried under this policy.

        Cancellation and interpreter-level exceptions (KeyboardInterrupt,
        asyncio.CancelledError) are never retried. An empty
        ``retryable_failure_kinds`` retries nothing.
        """
        if not isinstance(failure, Exception) or isinstance(failure, Cancelled):
            return False
        if self.retryable_failure_kinds is None:
            return True
        return isinstance(failure, self.retryable_failure_kinds)

    @classmethod
    def from_config(cls, config: RetryConfig, **options: Any) -> "RetryPolicy":
        """Build a policy from loaded configuration defaults."""
        values = config.model_dump()
        values.update(options)
        return cls(**values)

    @classmethod
    def fixed(cls, max_attempts: int, delay: float, **options: Any) -> "RetryPolicy":
        """Same delay between every attempt."""
        options.setdefault("max_delay", max(30.0, delay))
        return cls(max_attempts=max_attempts, initial_delay=delay, backoff_multiplier=1.0, **options)

    @classmethod
    def linear(cls, max_attempts: int, increment: float, **options: Any) -> "RetryPolicy":
        """Delay grows by ``increment`` after every failed attempt."""
        options.setdefault("max_delay", max(30.0, increment))
        return cls(
            max_attempts=max_attempts,
            initial_delay=increment,
            linear_increment=increment,
            **options,
        )

    @classmethod
    def jittered(cls, max_attempts: int, max_jitter: float = 0.5, **options: Any) -> "RetryPolicy":
        """Exponential backoff plus up to ``max_jitter`` seconds of random delay."""
        return cls(max_attempts=max_attempts, jitter=max_jitter, **options)

    @classmethod
    def retry_on(cls, *kinds: Type[BaseException], **options: Any) -> "RetryPolicy":
        """Retry only failures of the given types; anything else aborts at once."""
        return cls(retryable_failure_kinds=tuple(kinds), **options)

    @classmethod
    def immediate(cls, max_attempts: int, **options: Any) -> "RetryPolicy":
        """Retry without sleeping."""
        return cls(
            max_attempts=max_attempts,
            initial_delay=0.0,
            backoff_multiplier=1.0,
            **options,
        )

    @classmethod
    def time_bounded(cls, total_timeout: float, **options: Any) -> "RetryPolicy":
        """Keep retrying with exponential backoff until ``total_timeout`` elapses."""
        return cls(total_timeout=total_timeout, **options)
