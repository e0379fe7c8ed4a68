"""Connection settings for the real-time streams.

Values come from explicit arguments first, then environment variables,
then defaults matching the dashboard's production client:

    REALTIME_WS_URL                     ws://localhost:8080/ws/websocket
    REALTIME_RECONNECT_DELAY_MS         5000
    REALTIME_HEARTBEAT_INCOMING_MS      4000
    REALTIME_HEARTBEAT_OUTGOING_MS      4000
    REALTIME_CONNECT_TIMEOUT_SECONDS    10
    PRICE_ALERT_COOLDOWN_SECONDS        300
    NOTIFICATION_AUTO_CLOSE_MS          10000
"""

import os

from pydantic import BaseModel, Field

# The broker registers /ws as a SockJS endpoint; raw WebSocket lives under /websocket
DEFAULT_WS_URL = "ws://localhost:8080/ws/websocket"


class SessionConfig(BaseModel):
    """Per-session transport settings. Shared by value, never mutated."""

    url: str = Field(default=DEFAULT_WS_URL, description="WebSocket endpoint")
    reconnect_delay_ms: int = Field(
        default=5000, ge=0, description="Fixed delay before each reconnect"
    )
    heartbeat_incoming_ms: int = Field(
        default=4000, ge=0, description="Requested server heartbeat interval"
    )
    heartbeat_outgoing_ms: int = Field(
        default=4000, ge=0, description="Offered client heartbeat interval"
    )
    connect_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for opening socket and handshake"
    )

    @property
    def reconnect_delay_seconds(self) -> float:
        return self.reconnect_delay_ms / 1000.0


class NotificationConfig(BaseModel):
    """Desktop notification settings."""

    price_alert_cooldown_seconds: float = Field(
        default=300.0, ge=0, description="Minimum gap between alerts for one alert id"
    )
    auto_close_ms: int = Field(
        default=10000, ge=0, description="Auto-dismiss delay for desktop notifications"
    )
    icon: str = Field(default="/favicon.ico", description="Notification icon")


def load_session_config(url: str | None = None, **overrides) -> SessionConfig:
    """Build a SessionConfig from environment variables.

    Args:
        url: Endpoint override. Defaults to REALTIME_WS_URL.
        **overrides: Any other SessionConfig field

    Raises:
        pydantic.ValidationError: If an environment value is out of range
    """
    values = {
        "url": url or os.environ.get("REALTIME_WS_URL", DEFAULT_WS_URL),
        "reconnect_delay_ms": int(os.environ.get("REALTIME_RECONNECT_DELAY_MS", "5000")),
        "heartbeat_incoming_ms": int(
            os.environ.get("REALTIME_HEARTBEAT_INCOMING_MS", "4000")
        ),
        "heartbeat_outgoing_ms": int(
            os.environ.get("REALTIME_HEARTBEAT_OUTGOING_MS", "4000")
        ),
        "connect_timeout_seconds": float(
            os.environ.get("REALTIME_CONNECT_TIMEOUT_SECONDS", "10")
        ),
    }
    values.update(overrides)
    return SessionConfig(**values)


def load_notification_config(**overrides) -> NotificationConfig:
    """Build a NotificationConfig from environment variables."""
    values = {
        "price_alert_cooldown_seconds": float(
            os.environ.get("PRICE_ALERT_COOLDOWN_SECONDS", "300")
        ),
        "auto_close_ms": int(os.environ.get("NOTIFICATION_AUTO_CLOSE_MS", "10000")),
    }
    values.update(overrides)
    return NotificationConfig(**values)
