"""Retry configuration model."""

from pydantic import BaseModel, Field, model_validator


class RetryConfig(BaseModel):
    """Default retry settings loaded from configuration.

    Attributes:
        max_attempts: Maximum number of attempts (first call included)
        initial_delay: Delay before the first retry, in seconds
        backoff_multiplier: Exponential backoff multiplier (1.0 = fixed delay)
        max_delay: Upper bound for any single retry delay, in seconds
        jitter: Upper bound of random delay added to each retry, in seconds
    """

    max_attempts: int = Field(3, gt=0, le=100)
    initial_delay: float = Field(1.0, ge=0.0)  # Allow 0 for tests
    backoff_multiplier: float = Field(2.0, ge=1.0, le=10.0)
    max_delay: float = Field(30.0, ge=0.0)
    jitter: float = Field(0.0, ge=0.0, le=60.0)

    @model_validator(mode="after")
    def _max_delay_covers_initial_delay(self) -> "RetryConfig":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be greater than or equal to initial_delay")
        return self
