"""Desktop notification surface.

The OS notification layer is an external collaborator. Streams talk to it
through the DesktopNotifier protocol: a capability object handed to each
stream's gate at construction, so tests substitute a fake without touching
global state.
"""

import logging
from enum import StrEnum
from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field

from src.lib.logging_utils import sanitize_for_log

logger = logging.getLogger(__name__)


class NotificationPermission(StrEnum):
    """Permission states reported by the OS surface."""

    DEFAULT = "default"
    GRANTED = "granted"
    DENIED = "denied"


class NotificationRequest(BaseModel):
    """A fire-and-forget request to show a desktop notification.

    Notifications sharing a ``tag`` replace each other on the OS side.
    Clicking one focuses the application window and dismisses it.
    """

    model_config = ConfigDict(frozen=True)

    title: str = Field(description="Notification title")
    body: str = Field(description="Notification body")
    icon: str = Field(default="/favicon.ico", description="Icon URL or path")
    tag: str = Field(description="Replacement tag")
    auto_close_after_ms: int = Field(
        default=10000, ge=0, description="Dismiss after this delay regardless of interaction"
    )
    focus_on_click: bool = Field(
        default=True, description="Focus the application window when clicked"
    )


class DesktopNotifier(Protocol):
    """Capability for showing desktop notifications."""

    @property
    def permission(self) -> NotificationPermission: ...

    def request_permission(self) -> NotificationPermission: ...

    def show(self, request: NotificationRequest) -> None: ...


class LoggingNotifier:
    """DesktopNotifier that writes requests to the log.

    Used by the command-line client and anywhere no OS surface exists.
    Permission starts granted unless told otherwise.
    """

    def __init__(self, permission: NotificationPermission = NotificationPermission.GRANTED):
        self._permission = permission
        self.shown = 0

    @property
    def permission(self) -> NotificationPermission:
        return self._permission

    def request_permission(self) -> NotificationPermission:
        # a log has nobody to ask; anything but an explicit denial is granted
        if self._permission == NotificationPermission.DEFAULT:
            self._permission = NotificationPermission.GRANTED
        return self._permission

    def show(self, request: NotificationRequest) -> None:
        self.shown += 1
        logger.info(
            "Desktop notification",
            extra={
                "title": sanitize_for_log(request.title),
                "body": sanitize_for_log(request.body),
                "tag": sanitize_for_log(request.tag),
                "auto_close_after_ms": request.auto_close_after_ms,
            },
        )
