"""Stream assembly and lifecycle.

A NotificationStream wires one Session, Router, Dispatcher, Buffer and Gate
together for a single feature and ties the session's lifecycle to the
consumer (start/stop) and to identity changes.

Streams never share a connection, so one stalled or failing feature cannot
hold up another.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from src.realtime.bindings import StreamView
from src.realtime.buffer import NotificationBuffer
from src.realtime.config import SessionConfig
from src.realtime.dispatcher import EventParser, MessageDispatcher
from src.realtime.gate import Formatter, NotificationGate, NotifyPolicy
from src.realtime.models import ConnectionState, StreamState
from src.realtime.session import TransportSession
from src.realtime.shared.identity import IdentityProvider
from src.realtime.shared.notifier import DesktopNotifier, NotificationPermission
from src.realtime.topics import Scope, TopicRouter, TopicTemplate
from src.realtime.transport import TransportFactory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamSpec:
    """Declarative description of one feature stream.

    Attributes:
        name: Stream name used in logs and status
        templates: Topic templates, broadcast and user-scoped
        scope: Which templates the stream listens on
        parser: Decoded JSON payload -> events
        capacity: Buffer capacity
        policy_factory: Builds the gate policy (one per stream instance)
        formatter: Builds desktop notification requests; None for silent streams
        replace_by_key: Upsert buffer entries by dedup key
    """

    name: str
    templates: tuple[TopicTemplate, ...]
    scope: Scope
    parser: EventParser
    capacity: int
    policy_factory: Callable[[], NotifyPolicy]
    formatter: Formatter | None = None
    replace_by_key: bool = False


class NotificationStream:
    """One independent real-time feature stream."""

    def __init__(
        self,
        spec: StreamSpec,
        identity: IdentityProvider,
        notifier: DesktopNotifier | None = None,
        config: SessionConfig | None = None,
        transport_factory: TransportFactory | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._spec = spec
        self._identity = identity
        self._notifier = notifier
        self._mounted = False
        self._unsubscribe_identity: Callable[[], None] | None = None

        self.buffer: NotificationBuffer = NotificationBuffer(
            spec.capacity, replace_by_key=spec.replace_by_key
        )
        self.gate = NotificationGate(
            spec.policy_factory(), notifier=notifier, formatter=spec.formatter, clock=clock
        )
        self.router = TopicRouter(list(spec.templates))
        self.dispatcher = MessageDispatcher(spec.parser, self.buffer, self.gate, spec.name)
        self.session = TransportSession(
            spec.name,
            self.router,
            spec.scope,
            identity,
            self.dispatcher,
            config=config,
            transport_factory=transport_factory,
        )
        self.view = StreamView(self)

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def scope(self) -> Scope:
        return self._spec.scope

    @property
    def notifier(self) -> DesktopNotifier | None:
        return self._notifier

    @property
    def state(self) -> StreamState:
        return self.session.state

    @property
    def connection_state(self) -> ConnectionState:
        return self.session.connection_state

    @property
    def is_started(self) -> bool:
        return self._mounted

    def start(self) -> None:
        """Mount the stream: observe identity and activate when possible.

        Broadcast streams activate immediately; user-scoped streams wait
        for an identity. Desktop permission is requested once if the user
        has not decided yet. Must be called from within a running event loop.
        """
        if self._mounted:
            return
        self._mounted = True
        self._request_permission_if_undecided()
        self._unsubscribe_identity = self._identity.subscribe(self._on_identity_changed)
        self._sync_activation()

    def stop(self) -> None:
        """Unmount the stream. The buffer keeps its contents."""
        if not self._mounted:
            return
        self._mounted = False
        if self._unsubscribe_identity is not None:
            self._unsubscribe_identity()
            self._unsubscribe_identity = None
        self._deactivate()

    async def aclose(self) -> None:
        """Stop and wait for the connection to close."""
        self.stop()
        await self.session.wait_closed()

    def clear(self) -> None:
        """Explicitly empty the buffer."""
        self.buffer.clear()

    def get_status(self) -> dict:
        return {
            "stream": self.name,
            "scope": str(self.scope),
            "state": str(self.state),
            "connection": str(self.connection_state),
            "topics": self.session.subscribed_topics,
            "buffered": len(self.buffer),
            "notifications_shown": self.gate.shown_count,
            "connect_attempts": self.session.connect_attempts,
            "reconnects": self.session.reconnects,
            **self.dispatcher.stats.as_dict(),
        }

    def _request_permission_if_undecided(self) -> None:
        if self._notifier is None:
            return
        if self._notifier.permission != NotificationPermission.DEFAULT:
            return
        result = self._notifier.request_permission()
        logger.info(
            "Desktop notification permission requested",
            extra={"stream": self.name, "permission": str(result)},
        )

    def _can_subscribe(self) -> bool:
        return bool(self.router.compute_topics(self.scope, self._identity.user_id))

    def _sync_activation(self) -> None:
        if self._can_subscribe():
            self.session.activate()
        else:
            logger.debug(
                "Stream waiting for identity", extra={"stream": self.name}
            )
            self._deactivate()

    def _deactivate(self) -> None:
        self.session.deactivate()
        self.gate.reset()

    def _on_identity_changed(self, user_id: str | None) -> None:
        if not self._mounted or not self.scope.includes_user:
            return

        if not self._can_subscribe():
            logger.info("Identity lost, stream deactivated", extra={"stream": self.name})
            self._deactivate()
        elif not self.session.is_active:
            self.session.activate()
        else:
            self.session.resubscribe()
