"""Tests for domain enumerations."""

import pytest

from mailsync.domain.types import ChangeKind, ErrorKind, SyncState


class TestSyncStateEnum:
    """Tests for the SyncState enum."""

    def test_members(self):
        assert [s.value for s in SyncState] == ["disabled", "idle", "polling", "merging"]

    def test_string_serialization(self):
        assert str(SyncState.IDLE) == "idle"

    def test_from_string(self):
        assert SyncState("merging") == SyncState.MERGING

    def test_invalid_value_raises(self):
        with pytest.raises(ValueError):
            SyncState("paused")


class TestChangeKindEnum:
    """Tests for the ChangeKind enum."""

    def test_members(self):
        assert {k.value for k in ChangeKind} == {"merge_settled", "mutation", "sync_failed", "purged"}


class TestErrorKindEnum:
    """Tests for the ErrorKind enum."""

    def test_has_eight_members(self):
        assert len(ErrorKind) == 8

    def test_values_are_snake_case(self):
        assert ErrorKind.PROVIDER_QUOTA_EXCEEDED == "provider_quota_exceeded"
        assert ErrorKind.AUTH_REQUIRED == "auth_required"
