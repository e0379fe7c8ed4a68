"""Transport session: one physical connection per stream.

Lifecycle (explicit state machine):

    idle -> activating -> connected <-> disconnected -> activating -> ...
    any  -> idle                                    (deactivate)

- activating -> connected: handshake succeeded; topics computed by the
  router, registered with the dispatcher, subscribed on the transport.
- connected -> disconnected: any transport closure. The stream's buffer is
  untouched.
- disconnected -> activating: after the fixed reconnect delay, from
  scratch with a fresh transport. Retried forever.
- any -> idle: deactivate() cancels the run task (including a pending
  reconnect wait) and drops every subscription.

Every await is followed by a liveness check against the run's generation,
so a completion that lands after deactivate() can never subscribe or
dispatch.
"""

import asyncio
import contextlib
import logging
from collections.abc import Callable

from src.lib.logging_utils import log_expected_warning, sanitize_for_log
from src.realtime.config import SessionConfig
from src.realtime.dispatcher import MessageDispatcher
from src.realtime.models import ConnectionState, StreamState
from src.realtime.shared.errors import TransportError
from src.realtime.shared.identity import IdentityProvider
from src.realtime.topics import Scope, Topic, TopicRouter
from src.realtime.transport import Transport, TransportFactory, stomp_transport_factory

logger = logging.getLogger(__name__)

StateListener = Callable[[StreamState], None]
ConnectionListener = Callable[[ConnectionState], None]


class TransportSession:
    """Owns one publish/subscribe connection and its subscriptions."""

    def __init__(
        self,
        name: str,
        router: TopicRouter,
        scope: Scope,
        identity: IdentityProvider,
        dispatcher: MessageDispatcher,
        config: SessionConfig | None = None,
        transport_factory: TransportFactory | None = None,
    ):
        """Initialize session.

        Args:
            name: Stream name for logs
            router: Computes topics for the scope and identity
            scope: Stream scope
            identity: Source of user id and credential
            dispatcher: Receives frames for subscribed topics
            config: Connection settings. Defaults to SessionConfig().
            transport_factory: Creates a fresh Transport per attempt.
                               Defaults to STOMP over WebSocket.
        """
        self._name = name
        self._router = router
        self._scope = scope
        self._identity = identity
        self._dispatcher = dispatcher
        self._config = config or SessionConfig()
        self._transport_factory = transport_factory or stomp_transport_factory

        self._state = StreamState.IDLE
        self._active = False
        self._generation = 0
        self._task: asyncio.Task | None = None
        self._resubscribe_task: asyncio.Task | None = None
        self._transport: Transport | None = None
        self._subscriptions: dict[str, str] = {}
        self._identity_snapshot: str | None = None
        self._subscription_lock = asyncio.Lock()
        self._orphan_tasks: set[asyncio.Task] = set()
        self._state_listeners: list[StateListener] = []
        self._connection_listeners: list[ConnectionListener] = []

        self.connect_attempts = 0
        self.reconnects = 0

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def connection_state(self) -> ConnectionState:
        if self._state == StreamState.CONNECTED:
            return ConnectionState.CONNECTED
        return ConnectionState.DISCONNECTED

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def subscribed_topics(self) -> list[str]:
        return list(self._subscriptions)

    @property
    def identity_snapshot(self) -> str | None:
        """User id the current subscription set was computed for."""
        return self._identity_snapshot

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        self._state_listeners.append(listener)
        return lambda: self._remove(self._state_listeners, listener)

    def add_connection_listener(self, listener: ConnectionListener) -> Callable[[], None]:
        """Register for ``connected``/``disconnected`` changes."""
        self._connection_listeners.append(listener)
        return lambda: self._remove(self._connection_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener) -> None:
        if listener in listeners:
            listeners.remove(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def activate(self, identity: IdentityProvider | None = None) -> None:
        """Start the connection if not already active. Idempotent.

        Must be called from within a running event loop.

        Args:
            identity: Replaces the identity source for this and later runs
        """
        if identity is not None:
            self._identity = identity
        if self._active:
            return

        self._active = True
        self._generation += 1
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(
            self._run(generation), name=f"realtime-session-{self._name}"
        )
        logger.info("Session activated", extra={"stream": self._name})

    def deactivate(self) -> None:
        """Tear down the connection and release subscriptions. Idempotent.

        Takes effect immediately: a pending reconnect is cancelled and no
        callback from the old run can act afterwards. The socket itself is
        closed by the cancelled run task; await wait_closed() to join it.
        """
        if not self._active:
            return

        self._active = False
        self._generation += 1
        for task in (self._task, self._resubscribe_task):
            if task is not None and not task.done():
                task.cancel()
        self._resubscribe_task = None
        self._transport = None
        self._release_subscriptions()
        self._set_state(StreamState.IDLE)
        logger.info("Session deactivated", extra={"stream": self._name})

    async def wait_closed(self) -> None:
        """Wait for a deactivated session's run task (and its socket) to finish."""
        task, self._task = self._task, None
        if task is None:
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    def _is_current(self, generation: int) -> bool:
        return self._active and generation == self._generation

    async def _run(self, generation: int) -> None:
        while self._is_current(generation):
            self._set_state(StreamState.ACTIVATING)
            self.connect_attempts += 1
            transport = self._transport_factory(self._config, self._identity.credential)

            try:
                await transport.connect()
                if not self._is_current(generation):
                    return
                self._transport = transport
                self._set_state(StreamState.CONNECTED)
                await self._subscribe_current(generation)

                async for topic, body in transport.messages():
                    if not self._is_current(generation):
                        return
                    self._dispatcher.on_frame(topic, body)

                raise TransportError("message stream ended", self._config.url)

            except TransportError as e:
                log_expected_warning(
                    logger,
                    "Transport closed",
                    extra={
                        "stream": self._name,
                        "error_type": type(e).__name__,
                        "reason": sanitize_for_log(e.reason),
                    },
                )
            except Exception:
                # never let a session failure reach the host application
                logger.exception("Unexpected session failure", extra={"stream": self._name})
            finally:
                if self._is_current(generation):
                    self._transport = None
                    self._release_subscriptions()
                with contextlib.suppress(Exception):
                    await transport.close()

            if not self._is_current(generation):
                return

            self._set_state(StreamState.DISCONNECTED)
            self.reconnects += 1
            log_expected_warning(
                logger,
                "Reconnect scheduled",
                extra={"stream": self._name, "delay_ms": self._config.reconnect_delay_ms},
            )
            await asyncio.sleep(self._config.reconnect_delay_seconds)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def subscribe(self, topic: Topic) -> bool:
        """Register a topic with the dispatcher and subscribe on the transport.

        Returns:
            True if the subscription is now in place
        """
        transport = self._transport
        if transport is None or topic.name in self._subscriptions:
            return topic.name in self._subscriptions

        generation = self._generation
        self._dispatcher.register(topic)
        pending = asyncio.ensure_future(transport.subscribe(topic.name))
        try:
            subscription_id = await asyncio.shield(pending)
        except TransportError:
            self._dispatcher.unregister(topic.name)
            raise
        except asyncio.CancelledError:
            # the SUBSCRIBE may still reach the broker; undo it once its id is known
            self._dispatcher.unregister(topic.name)
            pending.add_done_callback(
                lambda done: self._release_orphan(transport, topic.name, done)
            )
            raise

        if not self._is_current(generation) or self._transport is not transport:
            self._dispatcher.unregister(topic.name)
            return False

        self._subscriptions[topic.name] = subscription_id
        logger.info(
            "Subscribed",
            extra={"stream": self._name, "topic": sanitize_for_log(topic.name)},
        )
        return True

    async def unsubscribe(self, topic_name: str) -> None:
        """Drop a topic. Frames on it are ignored from this call on."""
        self._dispatcher.unregister(topic_name)
        subscription_id = self._subscriptions.pop(topic_name, None)
        transport = self._transport
        if subscription_id is None or transport is None:
            return
        try:
            await transport.unsubscribe(subscription_id)
        except TransportError:
            # the run loop sees the same failure and reconnects
            logger.debug("Unsubscribe on failed transport", extra={"stream": self._name})

    def _release_orphan(self, transport: Transport, topic_name: str, done: asyncio.Future) -> None:
        """Unsubscribe a subscription whose caller was cancelled mid-flight."""
        if done.cancelled() or done.exception() is not None:
            return
        if transport is not self._transport:
            # that connection is gone and the broker dropped its subscriptions
            return
        task = asyncio.ensure_future(self._unsubscribe_orphan(transport, topic_name, done.result()))
        self._orphan_tasks.add(task)
        task.add_done_callback(self._orphan_tasks.discard)

    async def _unsubscribe_orphan(
        self, transport: Transport, topic_name: str, subscription_id: str
    ) -> None:
        try:
            await transport.unsubscribe(subscription_id)
        except TransportError:
            logger.debug("Unsubscribe on failed transport", extra={"stream": self._name})
            return
        logger.debug(
            "Released cancelled subscription",
            extra={"stream": self._name, "topic": sanitize_for_log(topic_name)},
        )

    async def _subscribe_current(self, generation: int) -> None:
        async with self._subscription_lock:
            if not self._is_current(generation):
                return
            user_id = self._identity.user_id
            self._identity_snapshot = user_id
            for topic in self._router.compute_topics(self._scope, user_id):
                if not self._is_current(generation) or self._identity.user_id != user_id:
                    # identity moved on; resubscribe() will install the new set
                    return
                await self.subscribe(topic)

    def resubscribe(self) -> None:
        """Replace the subscription set after an identity change.

        Topics that are not part of the new set stop dispatching right away;
        the transport-level swap (unsubscribe all, subscribe the new set)
        happens in a background task. A session that is not connected does
        nothing here: its next connect computes topics from scratch.
        """
        if not self._active:
            return

        wanted = {t.name for t in self._router.compute_topics(self._scope, self._identity.user_id)}
        for name in self._dispatcher.registered_topics:
            if name not in wanted:
                self._dispatcher.unregister(name)

        if self._state != StreamState.CONNECTED:
            return

        if self._resubscribe_task is not None and not self._resubscribe_task.done():
            self._resubscribe_task.cancel()
        self._resubscribe_task = asyncio.get_running_loop().create_task(
            self._resubscribe(self._generation), name=f"realtime-resubscribe-{self._name}"
        )

    async def _resubscribe(self, generation: int) -> None:
        try:
            async with self._subscription_lock:
                if not self._is_current(generation):
                    return
                for name in list(self._subscriptions):
                    await self.unsubscribe(name)
                user_id = self._identity.user_id
                self._identity_snapshot = user_id
                for topic in self._router.compute_topics(self._scope, user_id):
                    if not self._is_current(generation):
                        return
                    await self.subscribe(topic)
            logger.info(
                "Resubscribed",
                extra={"stream": self._name, "topics": len(self._subscriptions)},
            )
        except TransportError as e:
            # connection is going down; the run loop reconnects and resubscribes
            log_expected_warning(
                logger,
                "Resubscribe interrupted",
                extra={"stream": self._name, "error_type": type(e).__name__},
            )

    def _release_subscriptions(self) -> None:
        self._subscriptions.clear()
        self._dispatcher.reset()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _set_state(self, state: StreamState) -> None:
        if state == self._state:
            return
        previous_connection = self.connection_state
        self._state = state
        logger.debug(
            "Session state changed",
            extra={"stream": self._name, "state": str(state)},
        )
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed", extra={"stream": self._name})

        connection = self.connection_state
        if connection != previous_connection:
            for listener in list(self._connection_listeners):
                try:
                    listener(connection)
                except Exception:
                    logger.exception("Connection listener failed", extra={"stream": self._name})
