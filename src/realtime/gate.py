"""Dedup and rate-limit gate for desktop notifications.

Decides, per event, whether to surface a desktop notification. The decision
is independent of buffering: a suppressed event is still stored.

Policies (selected by stream configuration, never by the gate):
- TagReplacePolicy: always notify; the OS replaces notifications sharing a
  tag, which de-duplicates visually.
- TimedSuppressionPolicy: notify a key at most once per interval.
- SilentPolicy: never notify (stats streams).
"""

import logging
import time
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Protocol

from src.lib.logging_utils import log_expected_warning, sanitize_for_log
from src.realtime.models import PushEvent
from src.realtime.shared.notifier import (
    DesktopNotifier,
    NotificationPermission,
    NotificationRequest,
)

logger = logging.getLogger(__name__)

# Price alerts: one desktop notification per alert per 5 minutes
DEFAULT_SUPPRESSION_SECONDS = 300.0

Formatter = Callable[[PushEvent], NotificationRequest]


class NotifyPolicy(Protocol):
    """Decides whether a key may notify again."""

    retention_seconds: float

    def allows(self, last_notified: float | None, now: float) -> bool: ...


class TagReplacePolicy:
    """Always notify. Duplicate suppression is left to the OS tag."""

    retention_seconds = 0.0

    def allows(self, last_notified: float | None, now: float) -> bool:
        return True


class TimedSuppressionPolicy:
    """Notify a key only if it has not notified within ``interval_seconds``."""

    def __init__(self, interval_seconds: float = DEFAULT_SUPPRESSION_SECONDS):
        if interval_seconds < 0:
            raise ValueError("interval_seconds must be >= 0")
        self.interval_seconds = interval_seconds
        self.retention_seconds = interval_seconds

    def allows(self, last_notified: float | None, now: float) -> bool:
        if last_notified is None:
            return True
        return now - last_notified >= self.interval_seconds


class SilentPolicy:
    """Never notify."""

    retention_seconds = 0.0

    def allows(self, last_notified: float | None, now: float) -> bool:
        return False


class NotificationGate:
    """Per-stream gate in front of the desktop notifier.

    Holds the processed-keys set (key -> last notification time). Entries
    older than the policy's retention are pruned on every check.
    """

    def __init__(
        self,
        policy: NotifyPolicy,
        notifier: DesktopNotifier | None = None,
        formatter: Formatter | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize gate.

        Args:
            policy: Suppression policy for this stream
            notifier: Desktop notification capability (None disables display)
            formatter: Builds the request for an event that passes the gate
            clock: Time source in seconds, used when no ``now`` is given
        """
        self._policy = policy
        self._notifier = notifier
        self._formatter = formatter
        self._clock = clock
        self._processed: dict[str, float] = {}
        self._shown = 0

    @property
    def policy(self) -> NotifyPolicy:
        return self._policy

    @property
    def processed_keys(self) -> Mapping[str, float]:
        return MappingProxyType(self._processed)

    @property
    def shown_count(self) -> int:
        return self._shown

    def should_notify(self, key: str, now: float | None = None) -> bool:
        """Check the policy for a key and record it when allowed.

        Args:
            key: Dedup key (alert id, stock code)
            now: Current time in seconds; defaults to the gate clock

        Returns:
            True if a notification should be shown
        """
        if now is None:
            now = self._clock()
        self._prune(now)

        if not self._policy.allows(self._processed.get(key), now):
            logger.debug(
                "Notification suppressed",
                extra={"key": sanitize_for_log(key)},
            )
            return False

        self._processed[key] = now
        return True

    def offer(self, event: PushEvent, now: float | None = None) -> bool:
        """Run an event through the gate and show it if it passes.

        Returns:
            True if a notification request was issued
        """
        if self._notifier is None or self._formatter is None:
            return False

        if self._notifier.permission != NotificationPermission.GRANTED:
            log_expected_warning(
                logger,
                "Desktop notification skipped, permission not granted",
                extra={"permission": str(self._notifier.permission)},
            )
            return False

        if not self.should_notify(event.dedup_key, now):
            return False

        try:
            request = self._formatter(event)
            self._notifier.show(request)
        except Exception:
            # fire-and-forget: a broken notifier means fewer notifications
            logger.exception(
                "Desktop notification failed",
                extra={"key": sanitize_for_log(event.dedup_key)},
            )
            return False

        self._shown += 1
        return True

    def reset(self) -> None:
        """Forget every processed key."""
        self._processed.clear()

    def _prune(self, now: float) -> None:
        retention = self._policy.retention_seconds
        expired = [k for k, ts in self._processed.items() if now - ts > retention]
        for key in expired:
            del self._processed[key]
