"""Message dispatch for a single stream.

Demultiplexes incoming frames by topic, parses payloads into typed events
and hands them to the stream's inbound channel. The channel delivers each
item, in arrival order, to the buffer first and the gate second.

Dispatch never suspends and never raises: a malformed frame is logged and
dropped, and the session keeps running.
"""

import json
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from src.lib.logging_utils import (
    get_safe_error_info,
    log_expected_warning,
    sanitize_for_log,
)
from src.realtime.buffer import NotificationBuffer
from src.realtime.gate import NotificationGate
from src.realtime.models import PushEvent, is_clear_control
from src.realtime.shared.errors import FrameParseError
from src.realtime.topics import Topic, TopicKind

logger = logging.getLogger(__name__)

EventParser = Callable[[Any], list[PushEvent]]


@dataclass(frozen=True)
class Delivery:
    """One unit on the inbound channel: parsed events, or a clear command."""

    topic: str
    events: tuple[PushEvent, ...] = ()
    clear: bool = False


@dataclass
class DispatchStats:
    frames_received: int = 0
    frames_dropped: int = 0
    events_delivered: int = 0
    clears: int = 0

    def as_dict(self) -> dict:
        return {
            "frames_received": self.frames_received,
            "frames_dropped": self.frames_dropped,
            "events_delivered": self.events_delivered,
            "clears": self.clears,
        }


@dataclass
class InboundChannel:
    """FIFO channel between the dispatcher and the buffer/gate sinks.

    publish() drains synchronously. A publish from inside a sink (for
    example a buffer listener reacting to a change) is queued behind the
    current item instead of being delivered re-entrantly.
    """

    buffer: NotificationBuffer
    gate: NotificationGate
    _pending: deque = field(default_factory=deque, init=False)
    _draining: bool = field(default=False, init=False)

    def publish(self, delivery: Delivery) -> None:
        self._pending.append(delivery)
        if self._draining:
            return
        self._draining = True
        try:
            while self._pending:
                self._deliver(self._pending.popleft())
        finally:
            self._draining = False

    def _deliver(self, delivery: Delivery) -> None:
        if delivery.clear:
            self.buffer.clear()
            return
        self.buffer.insert_many(list(delivery.events))
        for event in delivery.events:
            self.gate.offer(event)


class MessageDispatcher:
    """Routes frames for registered topics to the stream's sinks."""

    def __init__(
        self,
        parser: EventParser,
        buffer: NotificationBuffer,
        gate: NotificationGate,
        stream_name: str = "stream",
    ):
        """Initialize dispatcher.

        Args:
            parser: Turns a decoded JSON payload into events; raises
                    ValidationError or ValueError on schema mismatch
            buffer: Stream buffer (first sink)
            gate: Stream notification gate (second sink)
            stream_name: Name used in log context
        """
        self._parser = parser
        self._stream_name = stream_name
        self._topics: dict[str, Topic] = {}
        self.channel = InboundChannel(buffer=buffer, gate=gate)
        self.stats = DispatchStats()

    @property
    def registered_topics(self) -> list[str]:
        return list(self._topics)

    def register(self, topic: Topic) -> None:
        self._topics[topic.name] = topic

    def unregister(self, topic_name: str) -> None:
        self._topics.pop(topic_name, None)

    def reset(self) -> None:
        """Forget every registered topic. Later frames on them are dropped."""
        self._topics.clear()

    def on_frame(self, topic: str, raw: str) -> bool:
        """Handle one frame body delivered on ``topic``.

        Returns:
            True if the frame produced a delivery, False if it was dropped
        """
        self.stats.frames_received += 1

        registered = self._topics.get(topic)
        if registered is None:
            self.stats.frames_dropped += 1
            logger.debug(
                "Frame for unregistered topic dropped",
                extra={"stream": self._stream_name, "topic": sanitize_for_log(topic)},
            )
            return False

        try:
            delivery = self._parse(registered, raw)
        except FrameParseError as e:
            self.stats.frames_dropped += 1
            log_expected_warning(
                logger,
                "Malformed payload dropped",
                extra={
                    "stream": self._stream_name,
                    "topic": sanitize_for_log(e.topic),
                    "error_type": e.error_type,
                    "payload_length": len(raw or ""),
                },
            )
            return False

        if delivery.clear:
            self.stats.clears += 1
            logger.info(
                "Clear control received",
                extra={"stream": self._stream_name, "topic": sanitize_for_log(topic)},
            )
        else:
            self.stats.events_delivered += len(delivery.events)

        try:
            self.channel.publish(delivery)
        except Exception:
            # sink failures stay inside the stream
            logger.exception(
                "Delivery failed",
                extra={"stream": self._stream_name, "topic": sanitize_for_log(topic)},
            )
            return False
        return True

    def _parse(self, topic: Topic, raw: str) -> Delivery:
        if topic.kind == TopicKind.CLEAR:
            return Delivery(topic=topic.name, clear=True)

        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise FrameParseError(topic.name, get_safe_error_info(e)["error_type"]) from e

        if is_clear_control(payload):
            return Delivery(topic=topic.name, clear=True)

        try:
            events = self._parser(payload)
        except (ValidationError, ValueError, TypeError) as e:
            raise FrameParseError(topic.name, get_safe_error_info(e)["error_type"]) from e

        if not events:
            raise FrameParseError(topic.name, "EmptyPayload")
        return Delivery(topic=topic.name, events=tuple(events))
