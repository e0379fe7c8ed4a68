"""Event models for the real-time notification streams.

Defines the immutable pydantic models for every payload the server pushes,
plus the lifecycle enums shared by sessions and bindings.

Payloads arrive camelCase (``signalType``, ``alertId``); attributes are
snake_case and populated through aliases. Unknown fields are ignored so a
newer server can add fields without breaking older clients.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

CLEAR_ALL_ACTION = "CLEAR_ALL"

SignalType = Literal["BUY", "SELL"]
AlertType = Literal["REACH", "DROP", "VOLUME_REACH"]


class StreamState(StrEnum):
    """Session lifecycle states."""

    IDLE = "idle"
    ACTIVATING = "activating"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ConnectionState(StrEnum):
    """Connection status as shown to consumers."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class PushEvent(BaseModel):
    """Base class for pushed events.

    Subclasses define ``dedup_key``: the natural identity used for both
    buffer keying and notification dedup.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    @property
    def dedup_key(self) -> str:
        raise NotImplementedError


class SignalNotification(PushEvent):
    """Buy/sell signal computed by the server for a stock."""

    code: str = Field(description="Stock code")
    signal_type: SignalType = Field(description="BUY or SELL")
    reason: str = Field(default="", description="Human readable signal rationale")
    buy_volume: int = Field(default=0, description="Aggregated buy volume")
    sell_volume: int = Field(default=0, description="Aggregated sell volume")
    last_price: float = Field(default=0.0, description="Last traded price")
    timestamp: datetime | None = Field(default=None, description="Signal time")
    score: float = Field(default=0, description="Signal strength score")
    price_change: float = Field(default=0.0, description="Price change in percent")

    @property
    def dedup_key(self) -> str:
        return self.code


class TrackedStockNotification(SignalNotification):
    """Signal for a stock on the user's tracked list."""

    # The DTO getter serializes as either "bigSignal" or "isBigSignal"
    is_big_signal: bool = Field(
        default=False,
        validation_alias=AliasChoices("isBigSignal", "bigSignal", "is_big_signal"),
        description="True when score >= 6",
    )


class PriceAlertNotification(PushEvent):
    """A user's price or volume alert has triggered."""

    alert_id: int = Field(description="Alert identifier")
    code: str = Field(description="Stock code")
    current_price: float | None = Field(default=None, description="Price at trigger")
    reach_price: float | None = Field(default=None, description="Upper threshold")
    drop_price: float | None = Field(default=None, description="Lower threshold")
    current_volume: int | None = Field(default=None, description="Volume at trigger")
    reach_volume: int | None = Field(default=None, description="Volume threshold")
    alert_type: AlertType = Field(description="REACH, DROP or VOLUME_REACH")
    timestamp: datetime | None = Field(default=None, description="Trigger time")
    message: str = Field(default="", description="Server formatted alert text")

    @property
    def dedup_key(self) -> str:
        return str(self.alert_id)


class TrackedStockStats(PushEvent):
    """Live intraday extremes for one tracked stock."""

    code: str = Field(description="Stock code")
    lowest_price_buy: float | None = None
    highest_price_buy: float | None = None
    lowest_price_sell: float | None = None
    highest_price_sell: float | None = None
    largest_volume_buy: int | None = None
    largest_volume_sell: int | None = None
    last_updated: datetime | None = None

    @property
    def dedup_key(self) -> str:
        return self.code


def is_clear_control(payload: Any) -> bool:
    """True if a decoded payload is the ``{"action": "CLEAR_ALL"}`` control message."""
    return isinstance(payload, dict) and payload.get("action") == CLEAR_ALL_ACTION
