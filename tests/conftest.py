"""
Pytest Configuration and Shared Fixtures
=========================================

Common fixtures used across all test modules.

Test Environment:
    - No test opens a real socket. Sessions get a MockTransportHub as their
      transport factory (tests/fixtures/mocks/mock_realtime.py).
    - Reconnect delays are shortened through SessionConfig so reconnect
      tests finish in milliseconds.

For Developers:
    - Import fixtures by name in test files (pytest auto-discovers conftest.py)
    - Add new shared fixtures here, test-specific fixtures in test files
    - Expected WARNING logs are quiet under pytest (log_expected_warning);
      assert on them explicitly with caplog when they matter
"""

import logging
import os

import pytest

from src.realtime.config import SessionConfig
from src.realtime.shared.identity import IdentityProvider
from tests.fixtures.mocks.mock_realtime import MOCK_URL, MockNotifier, MockTransportHub

# Set default test environment variables at module load time.
# setdefault() only sets if NOT already present, so CI values take precedence.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("REALTIME_WS_URL", MOCK_URL)
os.environ.setdefault("REALTIME_RECONNECT_DELAY_MS", "10")


@pytest.fixture(autouse=True)
def reset_env_vars():
    """
    Reset environment variables before each test.

    Ensures tests don't pollute each other's environment.
    """
    original_env = os.environ.copy()

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def transport_hub():
    """Transport factory handing out in-memory transports."""
    return MockTransportHub()


@pytest.fixture
def mock_notifier():
    """Desktop notifier with permission granted."""
    return MockNotifier()


@pytest.fixture
def session_config():
    """Session settings with a short reconnect delay."""
    return SessionConfig(url=MOCK_URL, reconnect_delay_ms=10)


@pytest.fixture
def anonymous_identity():
    """Identity provider with nobody logged in."""
    return IdentityProvider()


@pytest.fixture
def user_identity():
    """Identity provider for user 42."""
    return IdentityProvider(user_id=42, credential="token-42")


# =============================================================================
# Log Validation Helpers
# =============================================================================
#
# - Production code logs normally (never test-aware)
# - Tests explicitly assert on expected logs using caplog


def assert_error_logged(caplog, pattern: str):
    """
    Helper to assert an ERROR log was captured.

    Args:
        caplog: pytest caplog fixture
        pattern: String pattern to search for in log messages

    Raises:
        AssertionError: If no ERROR log matches the pattern
    """
    assert any(
        pattern in record.message
        for record in caplog.records
        if record.levelno >= logging.ERROR
    ), f"Expected ERROR log matching '{pattern}' not found"


def assert_warning_logged(caplog, pattern: str):
    """
    Helper to assert a WARNING log was captured.

    Args:
        caplog: pytest caplog fixture
        pattern: String pattern to search for in log messages

    Raises:
        AssertionError: If no WARNING log matches the pattern
    """
    assert any(
        pattern in record.message
        for record in caplog.records
        if record.levelno == logging.WARNING
    ), f"Expected WARNING log matching '{pattern}' not found"
