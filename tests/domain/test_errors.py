"""Tests for the domain error taxonomy and user-facing error reports."""

import pytest

from mailsync.domain.errors import (
    AuthRequired,
    InvalidTransitionError,
    MailSyncError,
    NetworkFailure,
    NotFoundError,
    ProviderQuotaExceeded,
    StorageFailure,
    ValidationFailure,
    to_error_report,
)
from mailsync.domain.types import ErrorKind, SyncState


class TestErrorClasses:
    """Kinds and retry flags."""

    @pytest.mark.parametrize(
        ("error", "kind", "retryable"),
        [
            (AuthRequired(), ErrorKind.AUTH_REQUIRED, False),
            (NetworkFailure("down"), ErrorKind.NETWORK_FAILURE, True),
            (ProviderQuotaExceeded(), ErrorKind.PROVIDER_QUOTA_EXCEEDED, True),
            (StorageFailure("disk full"), ErrorKind.STORAGE_FAILURE, False),
            (ValidationFailure("bad"), ErrorKind.VALIDATION_FAILURE, False),
            (NotFoundError("missing"), ErrorKind.NOT_FOUND, False),
        ],
    )
    def test_kind_and_retryable(self, error: MailSyncError, kind: ErrorKind, retryable: bool):
        assert isinstance(error, MailSyncError)
        assert error.kind == kind
        assert error.retryable is retryable

    def test_storage_failure_keeps_cause(self):
        cause = OSError("disk I/O error")

        error = StorageFailure("Failed to save conversations", cause=cause)

        assert error.cause is cause
        assert "disk I/O error" in error.message

    def test_quota_carries_retry_after(self):
        assert ProviderQuotaExceeded(retry_after=12.5).retry_after == 12.5

    def test_invalid_transition_message(self):
        error = InvalidTransitionError(SyncState.DISABLED, "poll")

        assert error.current_state == SyncState.DISABLED
        assert error.event == "poll"
        assert "poll" in str(error)
        assert "disabled" in str(error)


class TestToErrorReport:
    """Tests for to_error_report."""

    def test_auth_requires_sign_out(self):
        report = to_error_report(AuthRequired())

        assert report.kind == ErrorKind.AUTH_REQUIRED
        assert report.requires_sign_out is True
        assert report.retryable is False

    def test_domain_error_keeps_message(self):
        report = to_error_report(NetworkFailure("Could not reach Gmail"))

        assert report.message == "Could not reach Gmail"
        assert report.retryable is True
        assert report.requires_sign_out is False

    def test_unexpected_exception_hides_details(self):
        report = to_error_report(KeyError("internal_field"))

        assert report.kind == ErrorKind.UNKNOWN
        assert "internal_field" not in report.message
        assert report.retryable is True
