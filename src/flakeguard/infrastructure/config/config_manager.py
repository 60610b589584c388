"""Configuration manager for loading and validating .flakeguard.yml"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import ValidationError

from flakeguard.domain.config import AppConfig, RetryConfig, WaitConfig
from flakeguard.domain.models.policy import RetryPolicy
from flakeguard.domain.models.wait_spec import WaitSpec

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = ".flakeguard.yml"

# Environment variable -> (section, key, type)
ENV_OVERRIDES = {
    "FLAKEGUARD_RETRY_MAX_ATTEMPTS": ("retry", "max_attempts", int),
    "FLAKEGUARD_RETRY_INITIAL_DELAY": ("retry", "initial_delay", float),
    "FLAKEGUARD_RETRY_BACKOFF_MULTIPLIER": ("retry", "backoff_multiplier", float),
    "FLAKEGUARD_RETRY_MAX_DELAY": ("retry", "max_delay", float),
    "FLAKEGUARD_RETRY_JITTER": ("retry", "jitter", float),
    "FLAKEGUARD_WAIT_TIMEOUT": ("wait", "timeout", float),
    "FLAKEGUARD_WAIT_POLL_INTERVAL": ("wait", "poll_interval", float),
}


class ConfigurationError(Exception):
    """Configuration validation error."""

    pass


def _format_validation_error(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        field = ".".join(str(x) for x in item["loc"])
        lines.append(f"  - {field}: {item['msg']}")
    return "Configuration validation failed:\n" + "\n".join(lines)


class ConfigManager:
    """Manages configuration from .flakeguard.yml and environment variables

    Configuration priority:
    1. Default values (defined in Pydantic models)
    2. .flakeguard.yml file (searched from current directory upwards)
    3. Environment variables (FLAKEGUARD_*)
    4. Per-call overrides (retry_policy / wait_spec arguments, CLI options)
    """

    DEFAULT_CONFIG = {
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

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize config manager

        Args:
            config_path: Path to .flakeguard.yml (searches from current dir if None)

        Raises:
            ConfigurationError: If the file or an environment override is invalid
        """
        if isinstance(config_path, str):
            config_path = Path(config_path)
        self.config_path = config_path or self._find_config_file()
        try:
            self.config: AppConfig = self._load_config()
        except ValidationError as e:
            raise ConfigurationError(_format_validation_error(e)) from e

    def _find_config_file(self) -> Optional[Path]:
        """Find .flakeguard.yml starting from current directory

        Returns:
            Path to config file or None if not found
        """
        current = Path.cwd()
        for parent in [current] + list(current.parents):
            config_file = parent / CONFIG_FILE_NAME
            if config_file.exists():
                logger.info(f"Found config file: {config_file}")
                return config_file
        logger.debug(f"No {CONFIG_FILE_NAME} found, using defaults")
        return None

    def _load_config(self) -> AppConfig:
        """Load configuration from file and environment, then validate

        Raises:
            ConfigurationError: If the YAML file cannot be parsed
            ValidationError: If configuration values are invalid
        """
        config_dict = copy.deepcopy(self.DEFAULT_CONFIG)

        if self.config_path and self.config_path.exists():
            try:
                with open(self.config_path, "r", encoding="utf-8") as f:
                    file_config = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Failed to read config from {self.config_path}: {e}") from e
            if not isinstance(file_config, dict):
                raise ConfigurationError(f"Config file {self.config_path} must contain a mapping")
            config_dict = self._merge_config(config_dict, file_config)
            logger.info(f"Loaded configuration from {self.config_path}")

        config_dict = self._apply_env_overrides(config_dict)
        return AppConfig(**config_dict)

    def _merge_config(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge configuration dictionaries"""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply FLAKEGUARD_* environment variable overrides"""
        for env_name, (section, key, cast) in ENV_OVERRIDES.items():
            raw = os.getenv(env_name)
            if raw is None or raw == "":
                continue
            try:
                value = cast(raw)
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_name}: {raw!r}") from e
            config.setdefault(section, {})[key] = value
            logger.debug(f"Applied {env_name}={raw}")
        return config

    def get_retry_config(self) -> RetryConfig:
        """Get retry configuration"""
        return self.config.retry

    def get_wait_config(self) -> WaitConfig:
        """Get wait configuration"""
        return self.config.wait

    def retry_policy(self, **overrides: Any) -> RetryPolicy:
        """Build a RetryPolicy from configured defaults.

        Args:
            **overrides: RetryPolicy fields; None values are ignored. Overriding
                only one of initial_delay/max_delay moves the configured other
                one so that max_delay still covers initial_delay.

        Raises:
            ConfigurationError: If the resulting policy is invalid
        """
        options = {key: value for key, value in overrides.items() if value is not None}
        if "initial_delay" in options and "max_delay" not in options:
            options["max_delay"] = max(self.config.retry.max_delay, options["initial_delay"])
        if "max_delay" in options and "initial_delay" not in options:
            options["initial_delay"] = min(self.config.retry.initial_delay, options["max_delay"])
        try:
            return RetryPolicy.from_config(self.config.retry, **options)
        except ValidationError as e:
            raise ConfigurationError(_format_validation_error(e)) from e

    def wait_spec(self, **overrides: Any) -> WaitSpec:
        """Build a WaitSpec from configured defaults; None overrides are ignored."""
        options = {key: value for key, value in overrides.items() if value is not None}
        try:
            return WaitSpec.from_config(self.config.wait, **options)
        except ValidationError as e:
            raise ConfigurationError(_format_validation_error(e)) from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key (supports dot notation)

        Args:
            key: Configuration key (e.g., "retry.max_attempts" or "wait")
            default: Default value if key not found
        """
        keys = key.split(".")
        value = self.config.model_dump()
        for k in keys:
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value
