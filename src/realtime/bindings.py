"""Consumer bindings.

The read-only surface a rendering layer consumes for one stream: the
current buffer snapshot, the connection state, change subscriptions, and
a passthrough to ask the OS for notification permission.

Everything here reads; the only write a consumer can make is clear().
"""

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from src.realtime.models import ConnectionState, PushEvent
from src.realtime.shared.notifier import NotificationPermission

if TYPE_CHECKING:
    from src.realtime.stream import NotificationStream


class StreamView:
    """Observable view over a NotificationStream."""

    def __init__(self, stream: "NotificationStream"):
        self._stream = stream

    @property
    def name(self) -> str:
        return self._stream.name

    def snapshot(self) -> tuple[PushEvent, ...]:
        """Buffered events, newest first."""
        return self._stream.buffer.snapshot()

    def as_mapping(self) -> Mapping[str, PushEvent]:
        """Buffered events keyed by dedup key (stock code for stats)."""
        return self._stream.buffer.as_mapping()

    @property
    def connection_state(self) -> ConnectionState:
        return self._stream.connection_state

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED

    def on_change(self, listener: Callable[[tuple], None]) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns an unsubscribe function."""
        return self._stream.buffer.add_listener(listener)

    def on_connection_change(
        self, listener: Callable[[ConnectionState], None]
    ) -> Callable[[], None]:
        return self._stream.session.add_connection_listener(listener)

    def clear(self) -> None:
        self._stream.clear()

    @property
    def permission(self) -> NotificationPermission | None:
        """OS notification permission, None when the stream has no notifier."""
        notifier = self._stream.notifier
        if notifier is None:
            return None
        return notifier.permission

    def request_permission(self) -> NotificationPermission | None:
        notifier = self._stream.notifier
        if notifier is None:
            return None
        return notifier.request_permission()
