"""Configuration management with validation.

All settings are loaded from environment variables and validated at
construction time so a misconfigured run fails before any Graph call.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum


class AuthMode(str, Enum):
    """Supported ways of obtaining a Microsoft Graph token."""

    MANAGED_IDENTITY = "managed_identity"
    CLIENT_SECRET = "client_secret"


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

# Graph throttles per app per tenant; stay well under the Teams limits
DEFAULT_RATE_LIMIT_CALLS = 10
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 1.0

DEFAULT_RETRY_MAX_ATTEMPTS = 5
MAX_RETRY_ATTEMPTS = 10
DEFAULT_RETRY_BACKOFF_BASE_SECONDS = 1.0
DEFAULT_RETRY_BACKOFF_MAX_SECONDS = 30.0

DEFAULT_BATCH_CONCURRENCY = 1
MAX_BATCH_CONCURRENCY = 20

# Refuse runs that would remove more members than this without review
DEFAULT_MAX_REMOVALS_PER_RUN = 100

# Security constraints
MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max sync spec
MAX_GRAPH_PAGES = 500  # Stop following nextLink after this many pages

VALID_GUID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Runtime configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-batch.
    """

    # Authentication
    auth_mode: AuthMode = AuthMode.MANAGED_IDENTITY
    tenant_id: str | None = None
    client_id: str | None = None

    # Graph endpoint
    graph_base_url: str = GRAPH_BASE_URL
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Throttling
    rate_limit_calls: int = DEFAULT_RATE_LIMIT_CALLS
    rate_limit_window_seconds: float = DEFAULT_RATE_LIMIT_WINDOW_SECONDS

    # Retry
    retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    retry_backoff_base_seconds: float = DEFAULT_RETRY_BACKOFF_BASE_SECONDS
    retry_backoff_max_seconds: float = DEFAULT_RETRY_BACKOFF_MAX_SECONDS

    # Batch behavior
    batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY
    max_removals_per_run: int = DEFAULT_MAX_REMOVALS_PER_RUN
    dry_run: bool = False

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        Every problem is collected so the operator sees them all at once.
        """
        import re

        errors: list[str] = []

        if self.auth_mode == AuthMode.CLIENT_SECRET:
            if not self.tenant_id:
                errors.append("GRAPH_TENANT_ID is required when GRAPH_AUTH_MODE is client_secret")
            if not self.client_id:
                errors.append("GRAPH_CLIENT_ID is required when GRAPH_AUTH_MODE is client_secret")

        if self.tenant_id and not re.match(VALID_GUID_PATTERN, self.tenant_id.lower()):
            errors.append(f"GRAPH_TENANT_ID must be a valid GUID: {self.tenant_id}")

        if self.client_id and not re.match(VALID_GUID_PATTERN, self.client_id.lower()):
            errors.append(f"GRAPH_CLIENT_ID must be a valid GUID: {self.client_id}")

        if not self.graph_base_url.startswith("https://"):
            errors.append(f"GRAPH_BASE_URL must use https: {self.graph_base_url}")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"GRAPH_REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if self.rate_limit_calls < 1:
            errors.append("RATE_LIMIT_CALLS must be at least 1")

        if self.rate_limit_window_seconds <= 0:
            errors.append("RATE_LIMIT_WINDOW must be greater than 0")

        if not (1 <= self.retry_max_attempts <= MAX_RETRY_ATTEMPTS):
            errors.append(f"RETRY_MAX_ATTEMPTS must be between 1 and {MAX_RETRY_ATTEMPTS}")

        if self.retry_backoff_base_seconds < 0:
            errors.append("RETRY_BACKOFF_BASE cannot be negative")

        if self.retry_backoff_max_seconds < self.retry_backoff_base_seconds:
            errors.append("RETRY_BACKOFF_MAX must be at least RETRY_BACKOFF_BASE")

        if not (1 <= self.batch_concurrency <= MAX_BATCH_CONCURRENCY):
            errors.append(f"BATCH_CONCURRENCY must be between 1 and {MAX_BATCH_CONCURRENCY}")

        if self.max_removals_per_run < 0:
            errors.append("MAX_REMOVALS_PER_RUN cannot be negative")

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            GRAPH_AUTH_MODE: managed_identity (default) or client_secret
            GRAPH_TENANT_ID: Entra ID tenant (required for client_secret)
            GRAPH_CLIENT_ID: App registration or user-assigned identity client ID
            GRAPH_BASE_URL: Graph endpoint (default: https://graph.microsoft.com/v1.0)
            GRAPH_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
            RATE_LIMIT_CALLS: Calls allowed per window (default: 10)
            RATE_LIMIT_WINDOW: Window length in seconds (default: 1.0)
            RETRY_MAX_ATTEMPTS: Total attempts per operation (default: 5)
            RETRY_BACKOFF_BASE: Backoff base in seconds (default: 1.0)
            RETRY_BACKOFF_MAX: Backoff cap in seconds (default: 30.0)
            BATCH_CONCURRENCY: Operations in flight at once (default: 1)
            MAX_REMOVALS_PER_RUN: Removal guardrail per sync job (default: 100)
            DRY_RUN: If "true", plan only and never write (default: false)
            LOG_LEVEL: Logging level (default: INFO)

        The client secret for client_secret mode is read by security.py
        directly from GRAPH_CLIENT_SECRET and is never stored on Config.
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_auth_mode(value: str | None) -> AuthMode:
            if not value:
                return AuthMode.MANAGED_IDENTITY
            try:
                return AuthMode(value)
            except ValueError as e:
                valid = [m.value for m in AuthMode]
                raise ConfigurationError(f"GRAPH_AUTH_MODE must be one of {valid}: {value}") from e

        return cls(
            auth_mode=get_auth_mode(os.environ.get("GRAPH_AUTH_MODE")),
            tenant_id=os.environ.get("GRAPH_TENANT_ID") or None,
            client_id=os.environ.get("GRAPH_CLIENT_ID") or None,
            graph_base_url=os.environ.get("GRAPH_BASE_URL", GRAPH_BASE_URL).rstrip("/"),
            request_timeout_seconds=get_int(
                "GRAPH_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            rate_limit_calls=get_int("RATE_LIMIT_CALLS", DEFAULT_RATE_LIMIT_CALLS),
            rate_limit_window_seconds=get_float(
                "RATE_LIMIT_WINDOW", DEFAULT_RATE_LIMIT_WINDOW_SECONDS
            ),
            retry_max_attempts=get_int("RETRY_MAX_ATTEMPTS", DEFAULT_RETRY_MAX_ATTEMPTS),
            retry_backoff_base_seconds=get_float(
                "RETRY_BACKOFF_BASE", DEFAULT_RETRY_BACKOFF_BASE_SECONDS
            ),
            retry_backoff_max_seconds=get_float(
                "RETRY_BACKOFF_MAX", DEFAULT_RETRY_BACKOFF_MAX_SECONDS
            ),
            batch_concurrency=get_int("BATCH_CONCURRENCY", DEFAULT_BATCH_CONCURRENCY),
            max_removals_per_run=get_int("MAX_REMOVALS_PER_RUN", DEFAULT_MAX_REMOVALS_PER_RUN),
            dry_run=get_bool("DRY_RUN", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
