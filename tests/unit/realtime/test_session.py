"""Unit tests for TransportSession.

Covers the lifecycle state machine, reconnect after disconnect, cancellation
of a pending reconnect, resubscription on identity change and the liveness
guard on late completions. Every test uses the in-memory transport hub.
"""

import asyncio

import pytest

from src.realtime.buffer import NotificationBuffer
from src.realtime.config import SessionConfig
from src.realtime.dispatcher import MessageDispatcher
from src.realtime.gate import NotificationGate, TagReplacePolicy
from src.realtime.models import ConnectionState, StreamState
from src.realtime.session import TransportSession
from src.realtime.streams import parse_signals
from src.realtime.topics import (
    SIGNALS,
    SIGNALS_CLEAR,
    USER_SIGNALS,
    USER_SIGNALS_CLEAR,
    Scope,
    Topic,
    TopicKind,
    TopicRouter,
    TopicTemplate,
)
from tests.fixtures.mocks.mock_realtime import MOCK_URL, eventually

SIGNAL_TEMPLATES = [
    TopicTemplate(SIGNALS),
    TopicTemplate(SIGNALS_CLEAR, TopicKind.CLEAR),
    TopicTemplate(USER_SIGNALS),
    TopicTemplate(USER_SIGNALS_CLEAR, TopicKind.CLEAR),
]

ALL_TOPICS_42 = [
    "/topic/signals",
    "/topic/signals/clear",
    "/topic/signals/user/42",
    "/topic/signals/user/42/clear",
]

BUY_FPT = {"code": "FPT", "signalType": "BUY", "score": 5}


def make_session(hub, identity, config, scope=Scope.BOTH):
    buffer = NotificationBuffer(15)
    dispatcher = MessageDispatcher(
        parse_signals, buffer, NotificationGate(TagReplacePolicy()), "signals"
    )
    session = TransportSession(
        "signals",
        TopicRouter(SIGNAL_TEMPLATES),
        scope,
        identity,
        dispatcher,
        config=config,
        transport_factory=hub,
    )
    return session, buffer, dispatcher


async def shutdown(session: TransportSession) -> None:
    session.deactivate()
    await session.wait_closed()


def is_connected_with(session: TransportSession, count: int):
    return lambda: (
        session.state == StreamState.CONNECTED and len(session.subscribed_topics) == count
    )


class TestActivation:
    """Tests for activate() and the initial subscription."""

    @pytest.mark.asyncio
    async def test_connects_and_subscribes_in_router_order(
        self, transport_hub, user_identity, session_config
    ):
        session, _, dispatcher = make_session(transport_hub, user_identity, session_config)

        session.activate()
        await eventually(is_connected_with(session, 4))

        assert transport_hub.current.destinations == ALL_TOPICS_42
        assert dispatcher.registered_topics == ALL_TOPICS_42
        assert session.identity_snapshot == "42"
        assert session.connection_state == ConnectionState.CONNECTED
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_passes_credential_to_transport(
        self, transport_hub, user_identity, session_config
    ):
        session, _, _ = make_session(transport_hub, user_identity, session_config)

        session.activate()
        await eventually(is_connected_with(session, 4))

        assert transport_hub.current.credential == "token-42"
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_activate_is_idempotent(self, transport_hub, user_identity, session_config):
        session, _, _ = make_session(transport_hub, user_identity, session_config)

        session.activate()
        session.activate()
        await eventually(is_connected_with(session, 4))

        assert len(transport_hub.transports) == 1
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_dispatches_frames_to_buffer(
        self, transport_hub, user_identity, session_config
    ):
        session, buffer, _ = make_session(transport_hub, user_identity, session_config)
        session.activate()
        await eventually(is_connected_with(session, 4))

        transport_hub.current.push("/topic/signals/user/42", BUY_FPT)
        await eventually(lambda: len(buffer) == 1)

        assert buffer.snapshot()[0].code == "FPT"
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_state_listeners_see_lifecycle(
        self, transport_hub, user_identity, session_config
    ):
        session, _, _ = make_session(transport_hub, user_identity, session_config)
        states = []
        session.add_state_listener(states.append)

        session.activate()
        await eventually(is_connected_with(session, 4))
        await shutdown(session)

        assert states == [StreamState.ACTIVATING, StreamState.CONNECTED, StreamState.IDLE]


class TestReconnect:
    """Tests for reconnect after disconnect."""

    @pytest.mark.asyncio
    async def test_reconnects_and_resubscribes_after_drop(
        self, transport_hub, user_identity, session_config
    ):
        session, buffer, _ = make_session(transport_hub, user_identity, session_config)
        connection_states = []
        session.add_connection_listener(connection_states.append)
        session.activate()
        await eventually(is_connected_with(session, 4))
        transport_hub.current.push("/topic/signals", BUY_FPT)
        await eventually(lambda: len(buffer) == 1)

        first = transport_hub.current
        first.drop()
        await eventually(
            lambda: len(transport_hub.transports) == 2 and is_connected_with(session, 4)()
        )

        assert first.closed is True
        assert transport_hub.current.destinations == ALL_TOPICS_42
        assert session.reconnects == 1
        assert len(buffer) == 1
        assert connection_states == [
            ConnectionState.CONNECTED,
            ConnectionState.DISCONNECTED,
            ConnectionState.CONNECTED,
        ]
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_retries_refused_connects(self, transport_hub, user_identity, session_config):
        transport_hub.refuse_connects = 2
        session, _, _ = make_session(transport_hub, user_identity, session_config)

        session.activate()
        await eventually(is_connected_with(session, 4))

        assert session.connect_attempts == 3
        assert transport_hub.connect_calls == 3
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_deactivate_cancels_pending_reconnect(self, transport_hub, user_identity):
        config = SessionConfig(url=MOCK_URL, reconnect_delay_ms=60_000)
        session, _, _ = make_session(transport_hub, user_identity, config)
        session.activate()
        await eventually(is_connected_with(session, 4))

        transport_hub.current.drop()
        await eventually(lambda: session.state == StreamState.DISCONNECTED)
        session.deactivate()
        await session.wait_closed()
        await asyncio.sleep(0.05)

        assert session.state == StreamState.IDLE
        assert len(transport_hub.transports) == 1

    @pytest.mark.asyncio
    async def test_no_reconnect_when_deactivated_before_delay(
        self, transport_hub, user_identity
    ):
        config = SessionConfig(url=MOCK_URL, reconnect_delay_ms=50)
        session, _, _ = make_session(transport_hub, user_identity, config)
        session.activate()
        await eventually(is_connected_with(session, 4))

        transport_hub.current.drop()
        await eventually(lambda: session.state == StreamState.DISCONNECTED)
        session.deactivate()
        await asyncio.sleep(0.1)

        assert len(transport_hub.transports) == 1
        await session.wait_closed()


class TestDeactivate:
    @pytest.mark.asyncio
    async def test_releases_subscriptions_and_closes_transport(
        self, transport_hub, user_identity, session_config
    ):
        session, _, dispatcher = make_session(transport_hub, user_identity, session_config)
        session.activate()
        await eventually(is_connected_with(session, 4))

        session.deactivate()
        session.deactivate()
        await session.wait_closed()

        assert session.state == StreamState.IDLE
        assert session.is_active is False
        assert session.subscribed_topics == []
        assert dispatcher.registered_topics == []
        assert transport_hub.current.closed is True

    @pytest.mark.asyncio
    async def test_deactivate_idle_session_is_noop(self, transport_hub, user_identity):
        session, _, _ = make_session(transport_hub, user_identity, SessionConfig())

        session.deactivate()
        await session.wait_closed()

        assert session.state == StreamState.IDLE
        assert transport_hub.transports == []

    @pytest.mark.asyncio
    async def test_late_subscribe_completion_is_discarded(
        self, transport_hub, user_identity, session_config
    ):
        session, _, dispatcher = make_session(transport_hub, user_identity, session_config)
        session.activate()
        await eventually(is_connected_with(session, 4))

        transport = transport_hub.current
        release = asyncio.Event()

        async def slow_subscribe(destination):
            await release.wait()
            return "sub-late"

        transport.subscribe = slow_subscribe
        pending = asyncio.create_task(session.subscribe(Topic("/topic/extra")))
        await asyncio.sleep(0)

        session.deactivate()
        release.set()

        assert await pending is False
        assert "/topic/extra" not in dispatcher.registered_topics
        assert session.subscribed_topics == []
        await session.wait_closed()

    @pytest.mark.asyncio
    async def test_cancelled_subscribe_is_unsubscribed_when_it_lands(
        self, transport_hub, user_identity, session_config
    ):
        """A SUBSCRIBE whose caller was cancelled is undone on the broker."""
        session, _, dispatcher = make_session(transport_hub, user_identity, session_config)
        session.activate()
        await eventually(is_connected_with(session, 4))

        transport = transport_hub.current
        release = asyncio.Event()
        send_subscribe = transport.subscribe

        async def slow_subscribe(destination):
            await release.wait()
            return await send_subscribe(destination)

        transport.subscribe = slow_subscribe
        pending = asyncio.create_task(session.subscribe(Topic("/topic/extra")))
        await asyncio.sleep(0)

        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending
        assert "/topic/extra" not in dispatcher.registered_topics

        release.set()
        await eventually(lambda: "/topic/extra" in transport.unsubscribed)

        assert "/topic/extra" not in transport.destinations
        assert "/topic/extra" not in session.subscribed_topics
        assert session.state == StreamState.CONNECTED
        session.deactivate()
        await session.wait_closed()


class TestResubscribe:
    """Tests for resubscription on identity change."""

    @pytest.mark.asyncio
    async def test_identity_change_swaps_user_topics(
        self, transport_hub, user_identity, session_config
    ):
        session, buffer, dispatcher = make_session(transport_hub, user_identity, session_config)
        session.activate()
        await eventually(is_connected_with(session, 4))

        user_identity.set_identity(7, credential="token-7")
        session.resubscribe()

        # frames for the old user are ignored immediately
        assert "/topic/signals/user/42" not in dispatcher.registered_topics
        transport_hub.current.push("/topic/signals/user/42", BUY_FPT)

        await eventually(
            lambda: "/topic/signals/user/7" in session.subscribed_topics
            and len(session.subscribed_topics) == 4
        )
        await asyncio.sleep(0.01)

        assert len(buffer) == 0
        assert "/topic/signals/user/42" not in session.subscribed_topics
        assert "/topic/signals/user/42" in transport_hub.current.unsubscribed
        assert session.identity_snapshot == "7"
        assert len(transport_hub.transports) == 1

        transport_hub.current.push("/topic/signals/user/7", BUY_FPT)
        await eventually(lambda: len(buffer) == 1)
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_identity_lost_keeps_broadcast_topics(
        self, transport_hub, user_identity, session_config
    ):
        session, _, _ = make_session(transport_hub, user_identity, session_config)
        session.activate()
        await eventually(is_connected_with(session, 4))

        user_identity.clear()
        session.resubscribe()
        await eventually(
            lambda: session.subscribed_topics == ["/topic/signals", "/topic/signals/clear"]
        )

        assert session.identity_snapshot is None
        await shutdown(session)

    @pytest.mark.asyncio
    async def test_resubscribe_when_inactive_is_noop(self, transport_hub, user_identity):
        session, _, _ = make_session(transport_hub, user_identity, SessionConfig())

        session.resubscribe()

        assert transport_hub.transports == []
