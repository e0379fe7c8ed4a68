"""Error types for the real-time notification client.

None of these escape to the host application. Transport errors are absorbed
by the session's reconnect loop and parse errors by the dispatcher; they
exist so each layer can say precisely what went wrong in its logs.
"""


class RealtimeError(Exception):
    """Base class for real-time client errors."""

    pass


class TransportError(RealtimeError):
    """The physical connection failed or closed.

    Raised by transports for socket closure, network failure and protocol
    violations. The session treats every TransportError as a disconnect.
    """

    def __init__(self, reason: str, url: str | None = None):
        self.reason = reason
        self.url = url
        message = f"Transport failure: {reason}"
        if url:
            message += f" ({url})"
        super().__init__(message)


class HandshakeError(TransportError):
    """The connection opened but the broker handshake did not complete."""

    pass


class BrokerError(TransportError):
    """The broker sent an ERROR frame.

    Carries the broker's short message header; the frame body is kept
    separately because it may be long.
    """

    def __init__(self, reason: str, details: str | None = None, url: str | None = None):
        self.details = details
        super().__init__(reason, url=url)


class HeartbeatTimeoutError(TransportError):
    """No data (frames or heartbeats) arrived within the negotiated window."""

    def __init__(self, silence_ms: int, url: str | None = None):
        self.silence_ms = silence_ms
        super().__init__(f"no data for {silence_ms}ms", url=url)


class StompFrameError(RealtimeError):
    """A wire frame could not be decoded."""

    pass


class FrameParseError(RealtimeError):
    """A frame body did not match the stream's event schema.

    Raised inside the dispatcher and caught there; the frame is dropped.
    """

    def __init__(self, topic: str, error_type: str):
        self.topic = topic
        self.error_type = error_type
        super().__init__(f"Unparseable payload on {topic}: {error_type}")
