"""The four feature streams.

Each factory returns a StreamSpec: topic templates, scope, payload parser,
buffer capacity, gate policy and notification formatter. Streams are
independent; none shares a connection with another.

    stream           scope      capacity  policy
    signals          both       15        tag replace
    tracked          broadcast  20        tag replace
    price_alerts     user       20        timed suppression (300s)
    tracked_stats    user       200       silent, keyed upsert
"""

from typing import Any

from src.realtime.config import NotificationConfig
from src.realtime.gate import SilentPolicy, TagReplacePolicy, TimedSuppressionPolicy
from src.realtime.models import (
    PriceAlertNotification,
    SignalNotification,
    TrackedStockNotification,
    TrackedStockStats,
)
from src.realtime.shared.notifier import NotificationRequest
from src.realtime.stream import StreamSpec
from src.realtime.topics import (
    SIGNALS,
    SIGNALS_CLEAR,
    TRACKED_NOTIFICATIONS,
    USER_PRICE_ALERTS,
    USER_SIGNALS,
    USER_SIGNALS_CLEAR,
    USER_TRACKED_STATS,
    Scope,
    TopicKind,
    TopicTemplate,
)

SIGNALS_STREAM = "signals"
TRACKED_STREAM = "tracked"
PRICE_ALERTS_STREAM = "price_alerts"
TRACKED_STATS_STREAM = "tracked_stats"

SIGNALS_CAPACITY = 15
TRACKED_CAPACITY = 20
PRICE_ALERTS_CAPACITY = 20
TRACKED_STATS_CAPACITY = 200

SIGNAL_REASON_LIMIT = 150
TRACKED_REASON_LIMIT = 100

UP = "📈"
DOWN = "📉"


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


def _as_list(payload: Any) -> list:
    if isinstance(payload, list):
        return payload
    return [payload]


def parse_signals(payload: Any) -> list[SignalNotification]:
    """A signal frame carries one signal object (or a list of them)."""
    return [SignalNotification.model_validate(item) for item in _as_list(payload)]


def parse_tracked(payload: Any) -> list[TrackedStockNotification]:
    return [TrackedStockNotification.model_validate(item) for item in _as_list(payload)]


def parse_price_alerts(payload: Any) -> list[PriceAlertNotification]:
    return [PriceAlertNotification.model_validate(item) for item in _as_list(payload)]


def parse_tracked_stats(payload: Any) -> list[TrackedStockStats]:
    """A stats frame maps stock code -> stats and yields one event per code.

    Entries without their own ``code`` take it from the map key.

    Raises:
        ValueError: If the payload is not an object
    """
    if not isinstance(payload, dict):
        raise ValueError("tracked stats payload must be an object")
    events = []
    for code, stats in payload.items():
        if not isinstance(stats, dict):
            raise ValueError("tracked stats entry must be an object")
        events.append(TrackedStockStats.model_validate({"code": code, **stats}))
    return events


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


def _format_number(value: float) -> str:
    """Thousands-separated, without a trailing ``.0`` for whole numbers."""
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,}"


def _truncate(text: str, limit: int, ellipsis: bool) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + ("..." if ellipsis else "")


def _signal_icon(signal: SignalNotification) -> str:
    return UP if signal.signal_type == "BUY" else DOWN


def format_signal(
    signal: SignalNotification, config: NotificationConfig | None = None
) -> NotificationRequest:
    config = config or NotificationConfig()
    return NotificationRequest(
        title=f"{_signal_icon(signal)} {signal.signal_type} Signal: {signal.code}",
        body=_truncate(signal.reason, SIGNAL_REASON_LIMIT, ellipsis=True),
        icon=config.icon,
        tag=signal.code,
        auto_close_after_ms=config.auto_close_ms,
    )


def format_tracked(
    notification: TrackedStockNotification, config: NotificationConfig | None = None
) -> NotificationRequest:
    config = config or NotificationConfig()
    body = (
        f"Score: {notification.score:g}/10 | "
        f"Price: {_format_number(notification.last_price)}\n"
        f"{_truncate(notification.reason, TRACKED_REASON_LIMIT, ellipsis=False)}"
    )
    return NotificationRequest(
        title=f"{_signal_icon(notification)} {notification.signal_type} SIGNAL: {notification.code}",
        body=body,
        icon=config.icon,
        tag=f"tracked-{notification.code}",
        auto_close_after_ms=config.auto_close_ms,
    )


def format_price_alert(
    alert: PriceAlertNotification, config: NotificationConfig | None = None
) -> NotificationRequest:
    config = config or NotificationConfig()
    icon = UP if alert.alert_type == "REACH" else DOWN
    return NotificationRequest(
        title=f"{icon} Price Alert: {alert.code}",
        body=alert.message,
        icon=config.icon,
        tag=f"price-alert-{alert.alert_id}",
        auto_close_after_ms=config.auto_close_ms,
    )


# ---------------------------------------------------------------------------
# Stream specs
# ---------------------------------------------------------------------------


def signals_stream_spec(
    config: NotificationConfig | None = None, scope: Scope = Scope.BOTH
) -> StreamSpec:
    """Market signals: broadcast plus the user's own, each with a clear topic."""
    config = config or NotificationConfig()
    return StreamSpec(
        name=SIGNALS_STREAM,
        templates=(
            TopicTemplate(SIGNALS),
            TopicTemplate(SIGNALS_CLEAR, TopicKind.CLEAR),
            TopicTemplate(USER_SIGNALS),
            TopicTemplate(USER_SIGNALS_CLEAR, TopicKind.CLEAR),
        ),
        scope=scope,
        parser=parse_signals,
        capacity=SIGNALS_CAPACITY,
        policy_factory=TagReplacePolicy,
        formatter=lambda event: format_signal(event, config),
    )


def tracked_stream_spec(config: NotificationConfig | None = None) -> StreamSpec:
    config = config or NotificationConfig()
    return StreamSpec(
        name=TRACKED_STREAM,
        templates=(TopicTemplate(TRACKED_NOTIFICATIONS),),
        scope=Scope.BROADCAST,
        parser=parse_tracked,
        capacity=TRACKED_CAPACITY,
        policy_factory=TagReplacePolicy,
        formatter=lambda event: format_tracked(event, config),
    )


def price_alerts_stream_spec(config: NotificationConfig | None = None) -> StreamSpec:
    """Price alerts: one desktop notification per alert id per cooldown."""
    config = config or NotificationConfig()
    return StreamSpec(
        name=PRICE_ALERTS_STREAM,
        templates=(TopicTemplate(USER_PRICE_ALERTS),),
        scope=Scope.USER,
        parser=parse_price_alerts,
        capacity=PRICE_ALERTS_CAPACITY,
        policy_factory=lambda: TimedSuppressionPolicy(config.price_alert_cooldown_seconds),
        formatter=lambda event: format_price_alert(event, config),
    )


def tracked_stats_stream_spec() -> StreamSpec:
    return StreamSpec(
        name=TRACKED_STATS_STREAM,
        templates=(TopicTemplate(USER_TRACKED_STATS),),
        scope=Scope.USER,
        parser=parse_tracked_stats,
        capacity=TRACKED_STATS_CAPACITY,
        policy_factory=SilentPolicy,
        replace_by_key=True,
    )


def default_stream_specs(config: NotificationConfig | None = None) -> list[StreamSpec]:
    """All four feature streams in display order."""
    config = config or NotificationConfig()
    return [
        signals_stream_spec(config),
        tracked_stream_spec(config),
        price_alerts_stream_spec(config),
        tracked_stats_stream_spec(),
    ]
