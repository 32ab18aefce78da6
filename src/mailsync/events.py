"""Change notifications for observers of the conversation store.

Observers subscribe a callback and receive one ``ChangeEvent`` per settled
change: a committed store mutation, a completed merge pass, or a failed sync.
Events are never emitted while a mutation is still in progress.
"""

from __future__ import annotations

from collections.abc import Callable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from mailsync.domain.errors import ErrorReport
from mailsync.domain.types import ChangeKind

logger = structlog.get_logger()


class ChangeEvent(BaseModel):
    """A settled change observers may react to (e.g. by reloading a view)."""

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    conversation_ids: list[str] = Field(default_factory=list)
    error: ErrorReport | None = None


ChangeCallback = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """Fan-out of ``ChangeEvent``s to subscribed callbacks."""

    def __init__(self) -> None:
        self._subscribers: list[ChangeCallback] = []

    def subscribe(self, callback: ChangeCallback) -> Callable[[], None]:
        """Register *callback* and return a function that unregisters it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def emit(self, event: ChangeEvent) -> None:
        """Deliver *event* to every subscriber.

        A failing subscriber is logged and does not prevent delivery to the
        others.
        """
        logger.debug(
            "change_event",
            kind=event.kind.value,
            conversations=len(event.conversation_ids),
        )
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("change_subscriber_failed", kind=event.kind.value)
