"""Real-time notification client.

Owns the four feature streams and the shared identity provider. There is no
module-level instance: the host application constructs one client per
logged-in window and passes it to whatever renders the streams.

Usage:
    identity = IdentityProvider(user_id=42, credential=token)
    client = RealtimeClient(identity, notifier=LoggingNotifier())
    client.start()
    ...
    client.signals.snapshot()
    ...
    await client.aclose()
"""

import asyncio
import logging
import time
from collections.abc import Callable

from src.realtime.bindings import StreamView
from src.realtime.config import (
    NotificationConfig,
    SessionConfig,
    load_notification_config,
    load_session_config,
)
from src.realtime.shared.identity import IdentityProvider
from src.realtime.shared.notifier import DesktopNotifier
from src.realtime.stream import NotificationStream, StreamSpec
from src.realtime.streams import (
    PRICE_ALERTS_STREAM,
    SIGNALS_STREAM,
    TRACKED_STATS_STREAM,
    TRACKED_STREAM,
    default_stream_specs,
)
from src.realtime.transport import TransportFactory

logger = logging.getLogger(__name__)


class RealtimeClient:
    """The four independent notification streams behind one facade."""

    def __init__(
        self,
        identity: IdentityProvider,
        notifier: DesktopNotifier | None = None,
        session_config: SessionConfig | None = None,
        notification_config: NotificationConfig | None = None,
        transport_factory: TransportFactory | None = None,
        specs: list[StreamSpec] | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize client.

        Args:
            identity: Host-owned identity provider
            notifier: Desktop notification capability (None disables display)
            session_config: Connection settings. Defaults to the environment.
            notification_config: Notification settings. Defaults to the environment.
            transport_factory: Transport override, used by tests
            specs: Stream definitions. Defaults to the four feature streams.
            clock: Time source for the notification gates
        """
        self._identity = identity
        self._session_config = session_config or load_session_config()
        notification_config = notification_config or load_notification_config()
        self._started_at = time.time()

        self._streams: dict[str, NotificationStream] = {}
        for spec in specs or default_stream_specs(notification_config):
            self._streams[spec.name] = NotificationStream(
                spec,
                identity,
                notifier=notifier,
                config=self._session_config,
                transport_factory=transport_factory,
                clock=clock,
            )

    @property
    def identity(self) -> IdentityProvider:
        return self._identity

    @property
    def streams(self) -> dict[str, NotificationStream]:
        return dict(self._streams)

    def stream(self, name: str) -> NotificationStream:
        """Look up a stream by name.

        Raises:
            KeyError: If no stream has that name
        """
        return self._streams[name]

    def view(self, name: str) -> StreamView:
        return self.stream(name).view

    @property
    def signals(self) -> StreamView:
        return self.view(SIGNALS_STREAM)

    @property
    def tracked(self) -> StreamView:
        return self.view(TRACKED_STREAM)

    @property
    def price_alerts(self) -> StreamView:
        return self.view(PRICE_ALERTS_STREAM)

    @property
    def tracked_stats(self) -> StreamView:
        return self.view(TRACKED_STATS_STREAM)

    def start(self) -> None:
        """Mount every stream. Must be called from within a running event loop."""
        logger.info(
            "Starting realtime client",
            extra={"streams": list(self._streams), "has_identity": self._identity.user_id is not None},
        )
        for stream in self._streams.values():
            stream.start()

    def stop(self) -> None:
        for stream in self._streams.values():
            stream.stop()

    async def aclose(self) -> None:
        """Stop every stream and wait for their connections to close."""
        await asyncio.gather(*(stream.aclose() for stream in self._streams.values()))
        logger.info("Realtime client closed")

    def get_status(self) -> dict:
        """Get per-stream status.

        Returns:
            Dict with endpoint, uptime_seconds and one status dict per stream
        """
        return {
            "url": self._session_config.url,
            "uptime_seconds": time.time() - self._started_at,
            "streams": {name: s.get_status() for name, s in self._streams.items()},
        }
