"""STOMP 1.2 frame codec.

Just enough of the protocol for a subscribe-only client over a text
WebSocket: encoding CONNECT/SUBSCRIBE/UNSUBSCRIBE/DISCONNECT frames and
decoding CONNECTED/MESSAGE/RECEIPT/ERROR frames.

A WebSocket message may carry several NUL-terminated frames, or only
heartbeat EOLs. decode_frames() handles both.

Header values are escaped per STOMP 1.2 except on CONNECT and CONNECTED
frames, which the protocol leaves unescaped.
"""

from dataclasses import dataclass, field

from src.realtime.shared.errors import StompFrameError

NULL = "\x00"
EOL = "\n"
HEARTBEAT = EOL

_UNESCAPED_COMMANDS = frozenset({"CONNECT", "CONNECTED", "STOMP"})

_ESCAPES = (
    ("\\", "\\\\"),
    ("\r", "\\r"),
    ("\n", "\\n"),
    (":", "\\c"),
)


@dataclass
class Frame:
    """A single STOMP frame.

    Attributes:
        command: Frame command (CONNECT, MESSAGE, ...)
        headers: Header name -> value; first occurrence wins on decode
        body: Text body
    """

    command: str
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def destination(self) -> str | None:
        return self.headers.get("destination")


def _escape(value: str) -> str:
    for raw, escaped in _ESCAPES:
        value = value.replace(raw, escaped)
    return value


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch != "\\":
            out.append(ch)
            i += 1
            continue
        if i + 1 >= len(value):
            raise StompFrameError("Dangling escape in header")
        nxt = value[i + 1]
        if nxt == "\\":
            out.append("\\")
        elif nxt == "n":
            out.append("\n")
        elif nxt == "r":
            out.append("\r")
        elif nxt == "c":
            out.append(":")
        else:
            raise StompFrameError(f"Undefined escape sequence \\{nxt}")
        i += 2
    return "".join(out)


def encode_frame(frame: Frame) -> str:
    """Serialize a frame to its wire form, NUL terminator included."""
    escape = frame.command not in _UNESCAPED_COMMANDS
    lines = [frame.command]
    for name, value in frame.headers.items():
        if escape:
            name, value = _escape(name), _escape(str(value))
        lines.append(f"{name}:{value}")
    return EOL.join(lines) + EOL + EOL + frame.body + NULL


def _decode_one(chunk: str) -> Frame:
    head, sep, body = chunk.partition("\n\n")
    if not sep:
        # CRLF line endings are legal in 1.2
        head, sep, body = chunk.partition("\r\n\r\n")
    if not sep:
        raise StompFrameError("Frame has no header terminator")

    lines = head.replace("\r\n", "\n").split("\n")
    command = lines[0].strip()
    if not command:
        raise StompFrameError("Frame has no command")

    unescape = command not in _UNESCAPED_COMMANDS
    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line:
            continue
        name, colon, value = line.partition(":")
        if not colon:
            raise StompFrameError(f"Malformed header line in {command} frame")
        if unescape:
            name, value = _unescape(name), _unescape(value)
        # repeated headers: only the first value is used
        headers.setdefault(name, value)

    return Frame(command=command, headers=headers, body=body)


def decode_frames(data: str) -> list[Frame]:
    """Decode every frame in a WebSocket text message.

    Heartbeat EOLs before or between frames are skipped. Trailing text
    without a NUL terminator is treated as a complete frame when it holds
    anything other than EOLs.

    Raises:
        StompFrameError: If a frame is malformed
    """
    frames = []
    for chunk in data.split(NULL):
        chunk = chunk.lstrip("\r\n")
        if not chunk:
            continue
        frames.append(_decode_one(chunk))
    return frames


def is_heartbeat(data: str) -> bool:
    """True if the message consists of EOLs only."""
    return bool(data) and not data.strip("\r\n")


def parse_heartbeat_header(value: str | None) -> tuple[int, int]:
    """Parse a ``heart-beat`` header into (outgoing_ms, incoming_ms).

    Missing or malformed headers mean "no heartbeats" (0, 0).
    """
    if not value:
        return 0, 0
    try:
        sx, sy = value.split(",", 1)
        return max(0, int(sx)), max(0, int(sy))
    except ValueError:
        return 0, 0


def negotiate_heartbeat(
    client_outgoing_ms: int,
    client_incoming_ms: int,
    server_header: str | None,
) -> tuple[int, int]:
    """Negotiate heartbeat intervals from the CONNECTED frame.

    Returns:
        (send_every_ms, expect_every_ms). Zero disables that direction.
    """
    server_outgoing, server_incoming = parse_heartbeat_header(server_header)

    send_every = 0
    if client_outgoing_ms and server_incoming:
        send_every = max(client_outgoing_ms, server_incoming)

    expect_every = 0
    if client_incoming_ms and server_outgoing:
        expect_every = max(client_incoming_ms, server_outgoing)

    return send_every, expect_every


def connect_frame(
    host: str,
    heartbeat_outgoing_ms: int,
    heartbeat_incoming_ms: int,
    credential: str | None = None,
) -> Frame:
    headers = {
        "accept-version": "1.2,1.1,1.0",
        "host": host,
        "heart-beat": f"{heartbeat_outgoing_ms},{heartbeat_incoming_ms}",
    }
    if credential:
        headers["Authorization"] = f"Bearer {credential}"
    return Frame(command="CONNECT", headers=headers)


def subscribe_frame(destination: str, subscription_id: str) -> Frame:
    return Frame(
        command="SUBSCRIBE",
        headers={"id": subscription_id, "destination": destination, "ack": "auto"},
    )


def unsubscribe_frame(subscription_id: str) -> Frame:
    return Frame(command="UNSUBSCRIBE", headers={"id": subscription_id})


def disconnect_frame() -> Frame:
    return Frame(command="DISCONNECT")
