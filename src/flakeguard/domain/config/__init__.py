"""Configuration models with Pydantic validation."""

from flakeguard.domain.config.app import AppConfig
from flakeguard.domain.config.retry import RetryConfig
from flakeguard.domain.config.wait import WaitConfig

__all__ = [
    "AppConfig",
    "RetryConfig",
    "WaitConfig",
]
