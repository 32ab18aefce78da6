"""Domain-specific exception classes for the mail synchronization engine."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from mailsync.domain.types import ErrorKind, SyncState


class MailSyncError(Exception):
    """Base class for all domain errors.

    Attributes:
        message: Human-readable description, safe to show to a user.
        retryable: Whether repeating the same action may succeed.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = False

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuthRequired(MailSyncError):
    """Raised when the provider rejects the session; upstream must re-authenticate."""

    kind = ErrorKind.AUTH_REQUIRED

    def __init__(self, message: str = "Authentication required. Please sign in again.") -> None:
        super().__init__(message)


class NetworkFailure(MailSyncError):
    """Raised on transport or server-side failures talking to the provider."""

    kind = ErrorKind.NETWORK_FAILURE
    retryable = True


class ProviderQuotaExceeded(MailSyncError):
    """Raised when the provider rate-limits the account.

    Attributes:
        retry_after: Seconds the caller should wait before the next attempt.
    """

    kind = ErrorKind.PROVIDER_QUOTA_EXCEEDED
    retryable = True

    def __init__(
        self,
        message: str = "Mail provider quota exceeded. Please try again later.",
        retry_after: float = 60.0,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(message)


class StorageFailure(MailSyncError):
    """Raised when the local persistence layer fails.

    Attributes:
        cause: The underlying exception raised by the storage engine.
    """

    kind = ErrorKind.STORAGE_FAILURE

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        self.cause = cause
        detail = f"{message}: {cause}" if cause is not None else message
        super().__init__(detail)


class ValidationFailure(MailSyncError):
    """Raised when input is malformed and must not reach the store."""

    kind = ErrorKind.VALIDATION_FAILURE


class NotFoundError(MailSyncError):
    """Raised when a conversation or email id is not in the store."""

    kind = ErrorKind.NOT_FOUND


class InvalidTransitionError(MailSyncError):
    """Raised when an invalid sync state transition is attempted.

    Attributes:
        current_state: The state the machine was in when the transition was attempted.
        event: The event that was rejected.
    """

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, current_state: SyncState, event: str) -> None:
        self.current_state = current_state
        self.event = event
        super().__init__(f"Cannot apply event '{event}' in state '{current_state}'")


class ErrorReport(BaseModel):
    """User-facing description of a failure."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    retryable: bool
    requires_sign_out: bool = False


def to_error_report(exc: BaseException) -> ErrorReport:
    """Convert any exception into an ``ErrorReport``.

    Domain errors keep their own message and retry flag.  Anything else is
    reported as an unknown, retryable failure without leaking internals.

    Args:
        exc: The exception to describe.

    Returns:
        The report to surface to observers or HTTP clients.
    """
    if isinstance(exc, MailSyncError):
        return ErrorReport(
            kind=exc.kind,
            message=exc.message,
            retryable=exc.retryable,
            requires_sign_out=isinstance(exc, AuthRequired),
        )
    return ErrorReport(
        kind=ErrorKind.UNKNOWN,
        message="An unexpected error occurred",
        retryable=True,
    )
