"""Identity provider seen from the notification client.

The host application owns identity. The client reads the current user id
and auth credential and observes changes; it never writes back. Streams
register listeners instead of polling.
"""

import logging
from collections.abc import Callable

from src.lib.logging_utils import sanitize_for_log

logger = logging.getLogger(__name__)

IdentityListener = Callable[[str | None], None]


class IdentityProvider:
    """Observable holder for the current user id and credential."""

    def __init__(self, user_id: str | int | None = None, credential: str | None = None):
        self._user_id = None if user_id is None else str(user_id)
        self._credential = credential
        self._listeners: list[IdentityListener] = []

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def credential(self) -> str | None:
        return self._credential

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        """Register a listener called with the new user id on every change.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_identity(self, user_id: str | int | None, credential: str | None = None) -> None:
        """Update identity. Called by the host application only.

        Listeners fire only when the user id actually changes; a credential
        refresh for the same user does not force resubscription.
        """
        new_id = None if user_id is None else str(user_id)
        self._credential = credential
        if new_id == self._user_id:
            return

        logger.info(
            "Identity changed",
            extra={
                "had_identity": self._user_id is not None,
                "user_id": sanitize_for_log(new_id) if new_id else None,
            },
        )
        self._user_id = new_id
        for listener in list(self._listeners):
            try:
                listener(new_id)
            except Exception:
                logger.exception("Identity listener failed")

    def clear(self) -> None:
        """Forget the identity (logout)."""
        self.set_identity(None, None)
