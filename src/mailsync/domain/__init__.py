"""Domain types, models, and errors for the mail synchronization engine."""

from mailsync.domain.errors import (
    AuthRequired,
    ErrorReport,
    InvalidTransitionError,
    MailSyncError,
    NetworkFailure,
    NotFoundError,
    ProviderQuotaExceeded,
    StorageFailure,
    ValidationFailure,
    to_error_report,
)
from mailsync.domain.models import AttachmentInfo, Conversation, Email, normalize_address
from mailsync.domain.types import ChangeKind, ErrorKind, SyncState

__all__ = [
    "AttachmentInfo",
    "AuthRequired",
    "ChangeKind",
    "Conversation",
    "Email",
    "ErrorKind",
    "ErrorReport",
    "InvalidTransitionError",
    "MailSyncError",
    "NetworkFailure",
    "NotFoundError",
    "ProviderQuotaExceeded",
    "StorageFailure",
    "SyncState",
    "ValidationFailure",
    "normalize_address",
    "to_error_report",
]
