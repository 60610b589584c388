"""Main application configuration model."""

from pydantic import BaseModel, ConfigDict, Field

from flakeguard.domain.config.retry import RetryConfig
from flakeguard.domain.config.wait import WaitConfig


class AppConfig(BaseModel):
    """Main application configuration.

    Root model aggregating all configuration sections. Validation is performed
    at load time to fail fast on configuration errors.

    Attributes:
        retry: Retry defaults
        wait: Polling wait defaults
    """

    retry: RetryConfig = Field(default_factory=RetryConfig)
    wait: WaitConfig = Field(default_factory=WaitConfig)

    model_config = ConfigDict(
        validate_assignment=True,  # Validate on attribute assignment
        extra="forbid",  # Reject unknown fields
        json_schema_extra={
            "example": {
                "retry": {
                    "max_attempts": 3,
                    "initial_delay": 1.0,
                    "backoff_multiplier": 2.0,
                    "max_delay": 30.0,
                    "jitter": 0.0,
                },
                "wait": {
                    "timeout": 30.0,
                    "poll_interval": 0.5,
                },
            }
        },
    )
