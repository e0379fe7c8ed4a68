"""Topic routing for the real-time streams.

A stream declares its topic templates once; the router turns them into
concrete topic names for a scope and the current identity.

Topic names are a wire contract with the server and must not change:

    /topic/signals                              broadcast signals
    /topic/signals/clear                        broadcast clear control
    /topic/signals/user/{user_id}               user signals
    /topic/signals/user/{user_id}/clear         user clear control
    /topic/tracked-notifications                tracked-stock notifications
    /topic/price-alerts/user/{user_id}          price alerts
    /topic/tracked-stocks-stats/user/{user_id}  tracked-stock live stats
"""

from dataclasses import dataclass
from enum import StrEnum

SIGNALS = "/topic/signals"
SIGNALS_CLEAR = "/topic/signals/clear"
USER_SIGNALS = "/topic/signals/user/{user_id}"
USER_SIGNALS_CLEAR = "/topic/signals/user/{user_id}/clear"
TRACKED_NOTIFICATIONS = "/topic/tracked-notifications"
USER_PRICE_ALERTS = "/topic/price-alerts/user/{user_id}"
USER_TRACKED_STATS = "/topic/tracked-stocks-stats/user/{user_id}"


class Scope(StrEnum):
    """Which identity scope a stream listens on."""

    BROADCAST = "broadcast"
    USER = "user"
    BOTH = "both"

    @property
    def includes_broadcast(self) -> bool:
        return self in (Scope.BROADCAST, Scope.BOTH)

    @property
    def includes_user(self) -> bool:
        return self in (Scope.USER, Scope.BOTH)


class TopicKind(StrEnum):
    """What frames on a topic mean."""

    EVENTS = "events"
    CLEAR = "clear"


@dataclass(frozen=True)
class Topic:
    """A concrete topic the session subscribes to."""

    name: str
    kind: TopicKind = TopicKind.EVENTS

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class TopicTemplate:
    """A topic pattern, parameterized by ``{user_id}`` when user-scoped."""

    pattern: str
    kind: TopicKind = TopicKind.EVENTS

    @property
    def user_scoped(self) -> bool:
        return "{user_id}" in self.pattern

    def render(self, user_id: str | None = None) -> Topic:
        if self.user_scoped:
            if user_id is None:
                raise ValueError(f"{self.pattern} needs a user id")
            return Topic(self.pattern.format(user_id=user_id), self.kind)
        return Topic(self.pattern, self.kind)


class TopicRouter:
    """Computes the topic set for a stream.

    Broadcast templates come first, then user templates, each group in
    declaration order.
    """

    def __init__(self, templates: list[TopicTemplate]):
        self._broadcast = [t for t in templates if not t.user_scoped]
        self._user = [t for t in templates if t.user_scoped]

    @property
    def has_user_topics(self) -> bool:
        return bool(self._user)

    def compute_topics(self, scope: Scope, user_id: str | int | None) -> list[Topic]:
        """Compute the ordered topic list for a scope and identity.

        Args:
            scope: Stream scope
            user_id: Current identity id, None when unknown

        Returns:
            Topics to subscribe to. User topics are omitted when the
            identity is unknown, so a user-only scope yields an empty list.
        """
        topics: list[Topic] = []
        if scope.includes_broadcast:
            topics.extend(t.render() for t in self._broadcast)
        if scope.includes_user and user_id is not None and str(user_id) != "":
            topics.extend(t.render(str(user_id)) for t in self._user)
        return topics

    def requires_identity(self, scope: Scope) -> bool:
        """True if the stream cannot subscribe to anything without an identity."""
        return not self.compute_topics(scope, None)
