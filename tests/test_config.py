"""Tests for configuration loading."""

import os
from unittest.mock import patch

import pytest

from teamsops.config import (
    DEFAULT_BATCH_CONCURRENCY,
    DEFAULT_RATE_LIMIT_CALLS,
    GRAPH_BASE_URL,
    AuthMode,
    Config,
    ConfigurationError,
)

TENANT_ID = "12345678-1234-1234-1234-123456789012"
CLIENT_ID = "87654321-4321-4321-4321-210987654321"


class TestConfig:
    """Tests for Config class."""

    def test_defaults_are_valid(self) -> None:
        """Test that a default configuration is valid and secretless."""
        config = Config()

        assert config.auth_mode == AuthMode.MANAGED_IDENTITY
        assert config.graph_base_url == GRAPH_BASE_URL
        assert config.rate_limit_calls == DEFAULT_RATE_LIMIT_CALLS
        assert config.batch_concurrency == DEFAULT_BATCH_CONCURRENCY
        assert config.dry_run is False

    def test_client_secret_mode_requires_tenant_and_client(self) -> None:
        """Test that client_secret mode requires both ids."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(auth_mode=AuthMode.CLIENT_SECRET)

        assert "GRAPH_TENANT_ID" in str(exc_info.value)
        assert "GRAPH_CLIENT_ID" in str(exc_info.value)

    def test_client_secret_mode_valid(self) -> None:
        """Test a complete client_secret configuration."""
        config = Config(auth_mode=AuthMode.CLIENT_SECRET, tenant_id=TENANT_ID, client_id=CLIENT_ID)

        assert config.tenant_id == TENANT_ID

    def test_invalid_tenant_guid(self) -> None:
        """Test that a malformed tenant id is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(tenant_id="contoso")

        assert "valid GUID" in str(exc_info.value)

    def test_uppercase_guid_accepted(self) -> None:
        """Test that GUIDs are validated case-insensitively."""
        config = Config(tenant_id=TENANT_ID.upper())

        assert config.tenant_id == TENANT_ID.upper()

    def test_http_base_url_rejected(self) -> None:
        """Test that a plain-http Graph endpoint is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(graph_base_url="http://graph.microsoft.com/v1.0")

        assert "https" in str(exc_info.value)

    @pytest.mark.parametrize(
        ("field", "value", "message"),
        [
            ("rate_limit_calls", 0, "RATE_LIMIT_CALLS"),
            ("rate_limit_window_seconds", 0.0, "RATE_LIMIT_WINDOW"),
            ("retry_max_attempts", 0, "RETRY_MAX_ATTEMPTS"),
            ("retry_max_attempts", 11, "RETRY_MAX_ATTEMPTS"),
            ("retry_backoff_base_seconds", -1.0, "RETRY_BACKOFF_BASE"),
            ("batch_concurrency", 0, "BATCH_CONCURRENCY"),
            ("batch_concurrency", 21, "BATCH_CONCURRENCY"),
            ("max_removals_per_run", -1, "MAX_REMOVALS_PER_RUN"),
            ("request_timeout_seconds", 0, "GRAPH_REQUEST_TIMEOUT"),
            ("log_level", "VERBOSE", "LOG_LEVEL"),
        ],
    )
    def test_out_of_range_values(self, field: str, value: object, message: str) -> None:
        """Test that every bound is enforced."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(**{field: value})

        assert message in str(exc_info.value)

    def test_backoff_max_below_base(self) -> None:
        """Test that the backoff cap cannot be smaller than the base."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(retry_backoff_base_seconds=5.0, retry_backoff_max_seconds=1.0)

        assert "RETRY_BACKOFF_MAX" in str(exc_info.value)

    def test_all_errors_reported_together(self) -> None:
        """Test that validation collects every problem."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(rate_limit_calls=0, batch_concurrency=0)

        message = str(exc_info.value)
        assert "RATE_LIMIT_CALLS" in message
        assert "BATCH_CONCURRENCY" in message


class TestConfigFromEnv:
    """Tests for Config.from_env()."""

    def test_empty_environment_uses_defaults(self) -> None:
        """Test loading with nothing set."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config == Config()

    def test_from_env(self) -> None:
        """Test loading every setting from the environment."""
        env = {
            "GRAPH_AUTH_MODE": "client_secret",
            "GRAPH_TENANT_ID": TENANT_ID,
            "GRAPH_CLIENT_ID": CLIENT_ID,
            "GRAPH_BASE_URL": "https://graph.microsoft.com/beta/",
            "GRAPH_REQUEST_TIMEOUT": "60",
            "RATE_LIMIT_CALLS": "4",
            "RATE_LIMIT_WINDOW": "2.5",
            "RETRY_MAX_ATTEMPTS": "3",
            "RETRY_BACKOFF_BASE": "0.5",
            "RETRY_BACKOFF_MAX": "8",
            "BATCH_CONCURRENCY": "4",
            "MAX_REMOVALS_PER_RUN": "10",
            "DRY_RUN": "true",
            "LOG_LEVEL": "debug",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.auth_mode == AuthMode.CLIENT_SECRET
        assert config.graph_base_url == "https://graph.microsoft.com/beta"
        assert config.request_timeout_seconds == 60
        assert config.rate_limit_calls == 4
        assert config.rate_limit_window_seconds == 2.5
        assert config.retry_max_attempts == 3
        assert config.retry_backoff_base_seconds == 0.5
        assert config.retry_backoff_max_seconds == 8.0
        assert config.batch_concurrency == 4
        assert config.max_removals_per_run == 10
        assert config.dry_run is True
        assert config.log_level == "DEBUG"

    def test_invalid_integer(self) -> None:
        """Test that a non-integer value is reported by name."""
        with patch.dict(os.environ, {"BATCH_CONCURRENCY": "many"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "BATCH_CONCURRENCY" in str(exc_info.value)

    def test_invalid_float(self) -> None:
        """Test that a non-numeric window is reported by name."""
        with patch.dict(os.environ, {"RATE_LIMIT_WINDOW": "soon"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "RATE_LIMIT_WINDOW" in str(exc_info.value)

    def test_unknown_auth_mode(self) -> None:
        """Test that an unknown auth mode is rejected."""
        with patch.dict(os.environ, {"GRAPH_AUTH_MODE": "password"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "GRAPH_AUTH_MODE" in str(exc_info.value)

    @pytest.mark.parametrize(("raw", "expected"), [("1", True), ("yes", True), ("false", False)])
    def test_dry_run_parsing(self, raw: str, expected: bool) -> None:
        """Test boolean parsing of DRY_RUN."""
        with patch.dict(os.environ, {"DRY_RUN": raw}, clear=True):
            config = Config.from_env()

        assert config.dry_run is expected
