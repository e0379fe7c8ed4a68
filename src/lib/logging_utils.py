"""
Logging Utilities
=================

Shared logging helpers for the real-time notification client.

For On-Call Engineers:
    Dropped frames and reconnect attempts are *expected* on flaky networks.
    They are logged through log_expected_warning(), which emits WARNING in a
    running client and DEBUG under pytest so test output stays readable.

    Topic names and user ids arrive from the server or the identity provider.
    Always pass them through sanitize_for_log() before logging.

For Developers:
    - logger = logging.getLogger(__name__) in every module
    - put structured context in extra={...}, not in the message string
    - never log raw frame bodies; log their length and the error type
"""

import logging
import re
import sys
from typing import Any

# Maximum length for logged remote input to prevent log flooding
MAX_LOG_INPUT_LENGTH = 200


def _is_running_in_pytest() -> bool:
    """Check if code is running inside pytest."""
    return "pytest" in sys.modules


def log_expected_warning(logger: logging.Logger, message: str, **kwargs) -> None:
    """
    Log warnings that are expected during normal operation.

    Logged at DEBUG under pytest, WARNING otherwise.

    Args:
        logger: The logger instance to use
        message: The warning message
        **kwargs: Additional arguments (e.g., extra={})

    Examples:
        - Transport closed, reconnect scheduled
        - Malformed payload dropped
        - Desktop notification skipped for missing permission
    """
    if _is_running_in_pytest():
        logger.debug(message, **kwargs)
    else:
        logger.warning(message, **kwargs)


def is_running_tests() -> bool:
    """Check if running in pytest."""
    return _is_running_in_pytest()


def sanitize_for_log(value: Any, max_length: int = MAX_LOG_INPUT_LENGTH) -> str:
    """
    Sanitize a value for safe logging by removing control characters and
    limiting length.

    Args:
        value: Value to sanitize (converted to string)
        max_length: Maximum length of output (default: 200)

    Returns:
        Sanitized string safe for logging

    Example:
        >>> sanitize_for_log("/topic/signals\\n[FAKE] admin")
        '/topic/signals [FAKE] admin'
    """
    text = str(value)
    text = text.replace("\r", " ").replace("\n", " ").replace("\t", " ")
    text = re.sub(r"[\x00-\x1f\x7f-\x9f]", " ", text)

    if len(text) > max_length:
        text = text[:max_length] + "..."

    return text


def get_safe_error_info(exception: Exception) -> dict[str, str]:
    """
    Extract safe information from an exception for logging.

    Only the exception type is returned. Validation messages can echo
    server-supplied payload fragments, so they stay out of the log.

    Example:
        >>> get_safe_error_info(ValueError("payload here"))
        {'error_type': 'ValueError'}
    """
    return {"error_type": type(exception).__name__}
