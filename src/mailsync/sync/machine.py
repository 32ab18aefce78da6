"""SyncStateMachine class with trigger, history, and valid_events."""

from __future__ import annotations

import structlog

from mailsync.domain.errors import InvalidTransitionError
from mailsync.domain.types import SyncState
from mailsync.sync.transitions import ACTIVE_STATES, TRANSITIONS

logger = structlog.get_logger()


class SyncStateMachine:
    """Finite state machine governing the sync lifecycle.

    Tracks the current sync state, validates transitions against the
    transition map, and records the history of all state changes.

    Usage::

        sm = SyncStateMachine()
        sm.trigger("start")     # -> IDLE
        sm.trigger("poll")      # -> POLLING
        sm.trigger("fetched")   # -> MERGING
        sm.trigger("merged")    # -> IDLE
    """

    def __init__(self, initial_state: SyncState = SyncState.DISABLED) -> None:
        self._state: SyncState = initial_state
        self._history: list[tuple[SyncState, str, SyncState]] = []

    @property
    def state(self) -> SyncState:
        """Return the current sync state."""
        return self._state

    @property
    def is_active(self) -> bool:
        """Return True while a pass is in flight (POLLING or MERGING)."""
        return self._state in ACTIVE_STATES

    @property
    def history(self) -> list[tuple[SyncState, str, SyncState]]:
        """Return a copy of the transition history.

        Each entry is a ``(from_state, event, to_state)`` tuple recorded in
        chronological order.
        """
        return list(self._history)

    def trigger(self, event: str) -> SyncState:
        """Apply an event to the current state and transition.

        Args:
            event: The event string (e.g. ``"poll"``).

        Returns:
            The new state after the transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed from
                the current state.
        """
        key = (self._state, event)
        if key not in TRANSITIONS:
            raise InvalidTransitionError(self._state, event)

        old_state = self._state
        new_state = TRANSITIONS[key]
        self._history.append((old_state, event, new_state))
        self._state = new_state
        logger.debug("sync_transition", event=event, from_state=old_state.value, to_state=new_state.value)
        return new_state

    def get_valid_events(self) -> list[str]:
        """Return a sorted list of events valid from the current state."""
        return sorted(event for state, event in TRANSITIONS if state == self._state)
