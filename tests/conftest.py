"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for graph_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from graph_mock import MockGraphTenant, MockTokenProvider  # noqa: E402
from teamsops.config import Config  # noqa: E402


@pytest.fixture
def tenant() -> MockGraphTenant:
    return MockGraphTenant()


@pytest.fixture
def token_provider() -> MockTokenProvider:
    return MockTokenProvider()


@pytest.fixture
def fast_config() -> Config:
    """Config with no backoff delay and a budget tests never hit."""
    return Config(
        rate_limit_calls=1000,
        retry_max_attempts=3,
        retry_backoff_base_seconds=0.0,
        retry_backoff_max_seconds=0.0,
    )
