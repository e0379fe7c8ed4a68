"""Physical transport for the real-time streams.

Sessions talk to a Transport: open, subscribe, iterate messages, close.
The production implementation speaks STOMP 1.2 over a WebSocket using the
``websockets`` library. Tests inject fakes through a TransportFactory.

Every failure (socket error, closed connection, broker ERROR frame,
heartbeat silence, undecodable handshake) surfaces as a TransportError so
the session has exactly one thing to catch.
"""

import asyncio
import contextlib
import itertools
import logging
from collections.abc import AsyncIterator, Callable
from typing import Protocol
from urllib.parse import urlsplit

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from src.lib.logging_utils import log_expected_warning, sanitize_for_log
from src.lib.stomp import (
    HEARTBEAT,
    Frame,
    connect_frame,
    decode_frames,
    disconnect_frame,
    encode_frame,
    is_heartbeat,
    negotiate_heartbeat,
    subscribe_frame,
    unsubscribe_frame,
)
from src.realtime.config import SessionConfig
from src.realtime.shared.errors import (
    BrokerError,
    HandshakeError,
    HeartbeatTimeoutError,
    StompFrameError,
    TransportError,
)

logger = logging.getLogger(__name__)

STOMP_SUBPROTOCOLS = ["v12.stomp", "v11.stomp", "v10.stomp"]


class Transport(Protocol):
    """One physical publish/subscribe connection."""

    async def connect(self) -> None: ...

    async def subscribe(self, destination: str) -> str: ...

    async def unsubscribe(self, subscription_id: str) -> None: ...

    def messages(self) -> AsyncIterator[tuple[str, str]]: ...

    async def close(self) -> None: ...


TransportFactory = Callable[[SessionConfig, str | None], Transport]


class StompWebSocketTransport:
    """STOMP 1.2 client over a WebSocket.

    Heartbeats are negotiated on CONNECTED. Outgoing heartbeats are single
    EOLs sent by a background task; if nothing arrives for twice the
    negotiated incoming interval the connection is considered dead.
    """

    def __init__(self, config: SessionConfig, credential: str | None = None):
        """Initialize transport.

        Args:
            config: Endpoint, heartbeat and timeout settings
            credential: Auth token sent as a Bearer Authorization header
        """
        self._config = config
        self._credential = credential
        self._ws = None
        self._ids = itertools.count()
        self._send_every_ms = 0
        self._expect_every_ms = 0
        self._heartbeat_task: asyncio.Task | None = None
        self._backlog: list[Frame] = []

    @property
    def url(self) -> str:
        return self._config.url

    @property
    def negotiated_heartbeat(self) -> tuple[int, int]:
        """(send_every_ms, expect_every_ms) after connect."""
        return self._send_every_ms, self._expect_every_ms

    async def connect(self) -> None:
        """Open the socket and complete the STOMP handshake.

        Raises:
            TransportError: Socket could not be opened
            HandshakeError: No valid CONNECTED frame within the timeout
            BrokerError: Broker rejected the CONNECT
        """
        timeout = self._config.connect_timeout_seconds
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    subprotocols=STOMP_SUBPROTOCOLS,
                    ping_interval=None,
                ),
                timeout,
            )
        except (OSError, TimeoutError, WebSocketException) as e:
            raise TransportError(f"connect failed: {type(e).__name__}", self.url) from e

        host = urlsplit(self.url).hostname or "localhost"
        await self._send(
            connect_frame(
                host,
                self._config.heartbeat_outgoing_ms,
                self._config.heartbeat_incoming_ms,
                self._credential,
            )
        )

        try:
            connected = await asyncio.wait_for(self._await_connected(), timeout)
        except TimeoutError as e:
            raise HandshakeError("no CONNECTED frame", self.url) from e

        self._send_every_ms, self._expect_every_ms = negotiate_heartbeat(
            self._config.heartbeat_outgoing_ms,
            self._config.heartbeat_incoming_ms,
            connected.headers.get("heart-beat"),
        )
        if self._send_every_ms:
            self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        logger.info(
            "STOMP connected",
            extra={
                "url": sanitize_for_log(self.url),
                "version": connected.headers.get("version"),
                "send_every_ms": self._send_every_ms,
                "expect_every_ms": self._expect_every_ms,
            },
        )

    async def _await_connected(self) -> Frame:
        while True:
            data = await self._recv()
            if is_heartbeat(data):
                continue
            try:
                frames = decode_frames(data)
            except StompFrameError as e:
                raise HandshakeError(f"undecodable frame: {e}", self.url) from e
            for i, frame in enumerate(frames):
                if frame.command == "CONNECTED":
                    self._backlog.extend(frames[i + 1 :])
                    return frame
                if frame.command == "ERROR":
                    raise BrokerError(
                        frame.headers.get("message", "broker error"),
                        details=frame.body[:500],
                        url=self.url,
                    )
                raise HandshakeError(f"unexpected {frame.command} frame", self.url)

    async def subscribe(self, destination: str) -> str:
        subscription_id = f"sub-{next(self._ids)}"
        await self._send(subscribe_frame(destination, subscription_id))
        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        await self._send(unsubscribe_frame(subscription_id))

    async def messages(self) -> AsyncIterator[tuple[str, str]]:
        """Yield (destination, body) for each MESSAGE frame until the connection fails.

        Raises:
            TransportError: On closure, heartbeat timeout or broker ERROR frame
        """
        while self._backlog:
            frame = self._backlog.pop(0)
            message = self._handle(frame)
            if message is not None:
                yield message

        while True:
            data = await self._recv(self._receive_timeout())
            if is_heartbeat(data):
                continue
            try:
                frames = decode_frames(data)
            except StompFrameError:
                log_expected_warning(
                    logger,
                    "Undecodable STOMP frame dropped",
                    extra={"url": sanitize_for_log(self.url), "length": len(data)},
                )
                continue
            for frame in frames:
                message = self._handle(frame)
                if message is not None:
                    yield message

    def _handle(self, frame: Frame) -> tuple[str, str] | None:
        if frame.command == "MESSAGE":
            destination = frame.destination
            if destination is None:
                log_expected_warning(logger, "MESSAGE frame without destination dropped")
                return None
            return destination, frame.body
        if frame.command == "ERROR":
            raise BrokerError(
                frame.headers.get("message", "broker error"),
                details=frame.body[:500],
                url=self.url,
            )
        logger.debug("Ignoring STOMP frame", extra={"command": frame.command})
        return None

    def _receive_timeout(self) -> float | None:
        if not self._expect_every_ms:
            return None
        return self._expect_every_ms * 2 / 1000.0

    async def _recv(self, timeout: float | None = None) -> str:
        if self._ws is None:
            raise TransportError("not connected", self.url)
        try:
            if timeout is None:
                data = await self._ws.recv()
            else:
                data = await asyncio.wait_for(self._ws.recv(), timeout)
        except TimeoutError as e:
            raise HeartbeatTimeoutError(self._expect_every_ms * 2, self.url) from e
        except ConnectionClosed as e:
            raise TransportError(f"connection closed ({e.__class__.__name__})", self.url) from e
        except (OSError, WebSocketException) as e:
            raise TransportError(f"receive failed: {type(e).__name__}", self.url) from e
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")
        return data

    async def _send(self, frame: Frame) -> None:
        await self._send_raw(encode_frame(frame))

    async def _send_raw(self, data: str) -> None:
        if self._ws is None:
            raise TransportError("not connected", self.url)
        try:
            await self._ws.send(data)
        except (ConnectionClosed, OSError, WebSocketException) as e:
            raise TransportError(f"send failed: {type(e).__name__}", self.url) from e

    async def _heartbeat_loop(self) -> None:
        interval = self._send_every_ms / 1000.0
        try:
            while True:
                await asyncio.sleep(interval)
                await self._send_raw(HEARTBEAT)
        except TransportError:
            # the receive side notices the dead socket and reports it
            logger.debug("Heartbeat sender stopped", extra={"url": sanitize_for_log(self.url)})

    async def close(self) -> None:
        """Stop heartbeats, send DISCONNECT if possible and close the socket."""
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._heartbeat_task
            self._heartbeat_task = None

        ws, self._ws = self._ws, None
        if ws is None:
            return
        with contextlib.suppress(ConnectionClosed, OSError, WebSocketException):
            await ws.send(encode_frame(disconnect_frame()))
        with contextlib.suppress(ConnectionClosed, OSError, WebSocketException):
            await ws.close()


def stomp_transport_factory(config: SessionConfig, credential: str | None) -> Transport:
    """Default TransportFactory."""
    return StompWebSocketTransport(config, credential)
