"""Domain enumerations for the mail synchronization engine."""

from enum import StrEnum


class SyncState(StrEnum):
    """States of the sync orchestrator lifecycle."""

    DISABLED = "disabled"
    IDLE = "idle"
    POLLING = "polling"
    MERGING = "merging"


class ChangeKind(StrEnum):
    """Kinds of change notifications emitted to observers."""

    MERGE_SETTLED = "merge_settled"
    MUTATION = "mutation"
    SYNC_FAILED = "sync_failed"
    PURGED = "purged"


class ErrorKind(StrEnum):
    """User-facing error categories."""

    AUTH_REQUIRED = "auth_required"
    NETWORK_FAILURE = "network_failure"
    PROVIDER_QUOTA_EXCEEDED = "provider_quota_exceeded"
    STORAGE_FAILURE = "storage_failure"
    VALIDATION_FAILURE = "validation_failure"
    INVALID_TRANSITION = "invalid_transition"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


# Gmail label ids that drive read / sent flags during normalization
UNREAD_LABEL = "UNREAD"
SENT_LABEL = "SENT"

# Separator used when joining a participant set into a conversation key
PARTICIPANT_KEY_SEPARATOR = ","
