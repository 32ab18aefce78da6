"""Transition map defining all valid (state, event) -> state mappings."""

from enum import StrEnum

from mailsync.domain.types import SyncState


class SyncEvent(StrEnum):
    """Events that drive the sync orchestrator lifecycle."""

    START = "start"
    POLL = "poll"
    FETCHED = "fetched"
    FETCH_FAILED = "fetch_failed"
    MERGED = "merged"
    MERGE_FAILED = "merge_failed"
    STOP = "stop"


# All valid (current_state, event_string) -> next_state mappings.
# Any pair not in this dict is an invalid transition.
TRANSITIONS: dict[tuple[SyncState, str], SyncState] = {
    # From DISABLED
    (SyncState.DISABLED, SyncEvent.START): SyncState.IDLE,
    # From IDLE
    (SyncState.IDLE, SyncEvent.POLL): SyncState.POLLING,
    (SyncState.IDLE, SyncEvent.STOP): SyncState.DISABLED,
    # From POLLING
    (SyncState.POLLING, SyncEvent.FETCHED): SyncState.MERGING,
    (SyncState.POLLING, SyncEvent.FETCH_FAILED): SyncState.IDLE,
    # From MERGING
    (SyncState.MERGING, SyncEvent.MERGED): SyncState.IDLE,
    (SyncState.MERGING, SyncEvent.MERGE_FAILED): SyncState.IDLE,
}

# States in which a pass is in flight
ACTIVE_STATES: frozenset[SyncState] = frozenset({SyncState.POLLING, SyncState.MERGING})
