"""Tests for configuration validation with Pydantic."""

import tempfile
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from flakeguard.domain.config import AppConfig, RetryConfig, WaitConfig
from flakeguard.domain.models import RetryPolicy, WaitSpec
from flakeguard.infrastructure.config.config_manager import (
    CONFIG_FILE_NAME,
    ENV_OVERRIDES,
    ConfigManager,
    ConfigurationError,
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Run every test from an empty directory with no FLAKEGUARD_* variables set"""
    for env_name in ENV_OVERRIDES:
        monkeypatch.delenv(env_name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestRetryConfigValidation:
    """Tests for RetryConfig validation."""

    def test_valid_retry_config(self):
        """Test valid retry configuration"""
        config = RetryConfig(max_attempts=5, initial_delay=0.5, backoff_multiplier=1.5, max_delay=10.0)
        assert config.max_attempts == 5
        assert config.backoff_multiplier == 1.5

    def test_max_attempts_zero(self):
        """Test max_attempts must be positive"""
        with pytest.raises(ValidationError, match="max_attempts"):
            RetryConfig(max_attempts=0)

    def test_max_attempts_too_high(self):
        """Test max_attempts above maximum"""
        with pytest.raises(ValidationError, match="max_attempts"):
            RetryConfig(max_attempts=101)

    def test_initial_delay_zero_allowed(self):
        """Test zero initial delay is allowed"""
        assert RetryConfig(initial_delay=0.0).initial_delay == 0.0

    def test_backoff_multiplier_below_one(self):
        """Test backoff multiplier below 1.0"""
        with pytest.raises(ValidationError, match="backoff_multiplier"):
            RetryConfig(backoff_multiplier=0.9)

    def test_negative_jitter(self):
        """Test negative jitter"""
        with pytest.raises(ValidationError, match="jitter"):
            RetryConfig(jitter=-0.1)

    def test_max_delay_below_initial_delay(self):
        """Test max_delay must cover initial_delay"""
        with pytest.raises(ValidationError, match="max_delay"):
            RetryConfig(initial_delay=5.0, max_delay=1.0)


class TestWaitConfigValidation:
    """Tests for WaitConfig validation."""

    def test_valid_wait_config(self):
        """Test valid wait configuration"""
        config = WaitConfig(timeout=10.0, poll_interval=0.1)
        assert config.timeout == 10.0
        assert config.poll_interval == 0.1

    def test_negative_timeout(self):
        """Test negative timeout"""
        with pytest.raises(ValidationError, match="timeout"):
            WaitConfig(timeout=-1.0)

    def test_zero_poll_interval(self):
        """Test poll interval must be positive"""
        with pytest.raises(ValidationError, match="poll_interval"):
            WaitConfig(poll_interval=0.0)


class TestAppConfigValidation:
    """Tests for AppConfig validation."""

    def test_default_app_config(self):
        """Test default sections"""
        config = AppConfig()
        assert isinstance(config.retry, RetryConfig)
        assert isinstance(config.wait, WaitConfig)

    def test_unknown_section_rejected(self):
        """Test extra fields are forbidden"""
        with pytest.raises(ValidationError):
            AppConfig(browser={"headless": True})

    def test_validate_on_assignment(self):
        """Test assignment is validated"""
        config = AppConfig()
        with pytest.raises(ValidationError):
            config.retry = {"max_attempts": 0}


class TestConfigManagerValidation:
    """Tests for ConfigManager validation."""

    def test_load_valid_config_from_file(self):
        """Test loading valid configuration from file"""
        config_data = {"retry": {"max_attempts": 5, "initial_delay": 0.2}}

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yml", delete=False) as f:
            yaml.dump(config_data, f)
            config_path = f.name

        try:
            manager = ConfigManager(config_path=config_path)
            assert manager.config.retry.max_attempts == 5
            assert manager.config.retry.initial_delay == 0.2
            # Unspecified keys keep their defaults
            assert manager.config.retry.backoff_multiplier == 2.0
            assert manager.config.wait.timeout == 30.0
        finally:
            Path(config_path).unlink()

    def test_load_invalid_config_raises_error(self):
        """Test loading invalid configuration raises error"""
        config_data = {"retry": {"max_attempts": 0}}

        with tempfile.NamedTemporaryFile(mode="w", suffix=".yml", delete=False) as f:
            yaml.dump(config_data, f)
            config_path = f.name

        try:
            with pytest.raises(ConfigurationError, match="retry.max_attempts"):
                ConfigManager(config_path=config_path)
        finally:
            Path(config_path).unlink()

    def test_unknown_section_raises_error(self, isolated_config):
        """Test unknown top-level keys are reported"""
        config_file = isolated_config / CONFIG_FILE_NAME
        config_file.write_text("browser:\n  headless: true\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="browser"):
            ConfigManager(config_path=config_file)

    def test_malformed_yaml(self, isolated_config):
        """Test unparsable YAML raises ConfigurationError"""
        config_file = isolated_config / CONFIG_FILE_NAME
        config_file.write_text("retry: [unclosed\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Failed to read config"):
            ConfigManager(config_path=config_file)

    def test_non_mapping_yaml(self, isolated_config):
        """Test a YAML list is rejected"""
        config_file = isolated_config / CONFIG_FILE_NAME
        config_file.write_text("- retry\n- wait\n", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            ConfigManager(config_path=config_file)

    def test_empty_file_uses_defaults(self, isolated_config):
        """Test an empty config file is allowed"""
        config_file = isolated_config / CONFIG_FILE_NAME
        config_file.write_text("", encoding="utf-8")

        manager = ConfigManager(config_path=config_file)
        assert manager.config.retry.max_attempts == 3

    def test_default_config_is_valid(self):
        """Test default configuration is valid"""
        manager = ConfigManager()
        assert manager.config_path is None
        assert manager.config.retry.max_attempts == 3
        assert isinstance(manager.config, AppConfig)

    def test_get_typed_config_sections(self):
        """Test getter methods return typed models"""
        manager = ConfigManager()

        assert isinstance(manager.get_retry_config(), RetryConfig)
        assert isinstance(manager.get_wait_config(), WaitConfig)

    def test_config_found_in_parent_directory(self, isolated_config, monkeypatch):
        """Test .flakeguard.yml is searched upwards from the current directory"""
        (isolated_config / CONFIG_FILE_NAME).write_text("wait:\n  timeout: 12\n", encoding="utf-8")
        nested = isolated_config / "tests" / "e2e"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        manager = ConfigManager()
        assert manager.config_path == isolated_config / CONFIG_FILE_NAME
        assert manager.config.wait.timeout == 12.0

    def test_env_overrides_work(self, monkeypatch):
        """Test environment variable overrides"""
        monkeypatch.setenv("FLAKEGUARD_RETRY_MAX_ATTEMPTS", "7")
        monkeypatch.setenv("FLAKEGUARD_WAIT_POLL_INTERVAL", "0.25")

        manager = ConfigManager()
        assert manager.config.retry.max_attempts == 7
        assert manager.config.wait.poll_interval == 0.25

    def test_env_overrides_file(self, isolated_config, monkeypatch):
        """Test environment variables take priority over the file"""
        config_file = isolated_config / CONFIG_FILE_NAME
        config_file.write_text("retry:\n  max_attempts: 4\n", encoding="utf-8")
        monkeypatch.setenv("FLAKEGUARD_RETRY_MAX_ATTEMPTS", "9")

        manager = ConfigManager(config_path=config_file)
        assert manager.config.retry.max_attempts == 9

    def test_invalid_env_value(self, monkeypatch):
        """Test non-numeric environment values are reported"""
        monkeypatch.setenv("FLAKEGUARD_WAIT_TIMEOUT", "soon")

        with pytest.raises(ConfigurationError, match="FLAKEGUARD_WAIT_TIMEOUT"):
            ConfigManager()

    def test_out_of_range_env_value(self, monkeypatch):
        """Test environment values are validated"""
        monkeypatch.setenv("FLAKEGUARD_RETRY_MAX_ATTEMPTS", "0")

        with pytest.raises(ConfigurationError, match="retry.max_attempts"):
            ConfigManager()

    def test_get_with_dot_notation(self):
        """Test dotted key lookup"""
        manager = ConfigManager()
        assert manager.get("retry.max_attempts") == 3
        assert manager.get("wait")["poll_interval"] == 0.5
        assert manager.get("retry.missing", "fallback") == "fallback"


class TestConfigManagerFactories:
    """Tests for building policies and wait specs from configuration."""

    def test_retry_policy_from_defaults(self):
        """Test policy mirrors configured retry defaults"""
        policy = ConfigManager().retry_policy(description="open chat")
        assert isinstance(policy, RetryPolicy)
        assert policy.max_attempts == 3
        assert policy.description == "open chat"

    def test_retry_policy_ignores_none_overrides(self):
        """Test None overrides keep the configured value"""
        policy = ConfigManager().retry_policy(max_attempts=None, jitter=None)
        assert policy.max_attempts == 3
        assert policy.jitter == 0.0

    def test_retry_policy_long_initial_delay_raises_cap(self):
        """Test an initial delay above the configured cap lifts max_delay"""
        policy = ConfigManager().retry_policy(initial_delay=45.0)
        assert policy.initial_delay == 45.0
        assert policy.max_delay == 45.0

    def test_retry_policy_short_max_delay_lowers_initial_delay(self):
        """Test a cap below the configured initial delay lowers that delay"""
        policy = ConfigManager().retry_policy(max_delay=0.5)
        assert policy.max_delay == 0.5
        assert policy.initial_delay == 0.5

    def test_retry_policy_explicit_delays_still_checked(self):
        """Test explicit initial_delay above explicit max_delay is rejected"""
        with pytest.raises(ConfigurationError, match="max_delay"):
            ConfigManager().retry_policy(initial_delay=5.0, max_delay=1.0)

    def test_retry_policy_invalid_override(self):
        """Test invalid overrides raise ConfigurationError"""
        with pytest.raises(ConfigurationError, match="max_attempts"):
            ConfigManager().retry_policy(max_attempts=0)

    def test_wait_spec_from_file(self, isolated_config):
        """Test wait spec mirrors configured wait defaults"""
        config_file = isolated_config / CONFIG_FILE_NAME
        config_file.write_text("wait:\n  timeout: 5\n  poll_interval: 0.2\n", encoding="utf-8")

        spec = ConfigManager(config_path=config_file).wait_spec(description="page loaded")
        assert isinstance(spec, WaitSpec)
        assert spec.timeout == 5.0
        assert spec.poll_interval == 0.2
        assert spec.description == "page loaded"

    def test_wait_spec_invalid_override(self):
        """Test invalid wait overrides raise ConfigurationError"""
        with pytest.raises(ConfigurationError, match="poll_interval"):
            ConfigManager().wait_spec(poll_interval=0)
