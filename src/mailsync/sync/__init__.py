"""Sync orchestration: lifecycle state machine and polling loop."""

from mailsync.sync.machine import SyncStateMachine
from mailsync.sync.orchestrator import SyncOrchestrator, SyncResult, SyncStatus
from mailsync.sync.transitions import ACTIVE_STATES, TRANSITIONS, SyncEvent

__all__ = [
    "ACTIVE_STATES",
    "SyncEvent",
    "SyncOrchestrator",
    "SyncResult",
    "SyncStateMachine",
    "SyncStatus",
    "TRANSITIONS",
]
