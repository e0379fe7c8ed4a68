"""
Unit tests for logging_utils module.

Tests cover:
- sanitize_for_log: log injection prevention for topics and user ids
- get_safe_error_info: type-only exception logging
- log_expected_warning: quiet expected degradations under pytest
"""

import logging

from src.lib.logging_utils import (
    get_safe_error_info,
    is_running_tests,
    log_expected_warning,
    sanitize_for_log,
)


class TestSanitizeForLog:
    """Tests for sanitize_for_log function."""

    def test_removes_newlines(self):
        """Test that newlines are replaced with spaces."""
        result = sanitize_for_log("/topic/signals\n[FAKE] admin")
        assert "\n" not in result
        assert result == "/topic/signals [FAKE] admin"

    def test_removes_carriage_returns_and_tabs(self):
        """Test that carriage returns and tabs are replaced with spaces."""
        assert sanitize_for_log("a\rb\tc") == "a b c"

    def test_removes_control_characters(self):
        """Test that control characters are removed."""
        result = sanitize_for_log("text\x00\x1fnull")
        assert "\x00" not in result
        assert "\x1f" not in result

    def test_truncates_long_input(self):
        """Test that long input is truncated with ellipsis."""
        result = sanitize_for_log("a" * 300)
        assert len(result) == 203
        assert result.endswith("...")

    def test_custom_max_length(self):
        """Test custom max length parameter."""
        result = sanitize_for_log("a" * 100, max_length=50)
        assert len(result) == 53

    def test_converts_non_strings(self):
        """Test that ids and None are stringified."""
        assert sanitize_for_log(42) == "42"
        assert sanitize_for_log(None) == "None"


class TestGetSafeErrorInfo:
    """Tests for get_safe_error_info function."""

    def test_returns_only_error_type(self):
        """Test that the message (which may echo payload data) is dropped."""
        info = get_safe_error_info(ValueError('{"code": "secret payload"}'))
        assert info == {"error_type": "ValueError"}


class TestLogExpectedWarning:
    """Tests for log_expected_warning function."""

    def test_detects_pytest(self):
        assert is_running_tests() is True

    def test_logs_at_debug_under_pytest(self, caplog):
        """Expected warnings must not show up as WARNING in test runs."""
        logger = logging.getLogger("test.expected")
        with caplog.at_level(logging.DEBUG, logger="test.expected"):
            log_expected_warning(logger, "Reconnect scheduled", extra={"stream": "signals"})

        records = [r for r in caplog.records if r.name == "test.expected"]
        assert len(records) == 1
        assert records[0].levelno == logging.DEBUG
        assert records[0].stream == "signals"

    def test_logs_at_warning_outside_pytest(self, mocker, caplog):
        mocker.patch("src.lib.logging_utils._is_running_in_pytest", return_value=False)
        logger = logging.getLogger("test.expected")
        with caplog.at_level(logging.DEBUG, logger="test.expected"):
            log_expected_warning(logger, "Malformed payload dropped")

        assert caplog.records[-1].levelno == logging.WARNING
