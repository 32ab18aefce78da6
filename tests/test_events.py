"""Tests for change notifications."""

from mailsync.domain.errors import NetworkFailure, to_error_report
from mailsync.domain.types import ChangeKind
from mailsync.events import ChangeEvent, ChangeNotifier


class TestChangeNotifier:
    """Tests for ChangeNotifier."""

    def test_delivers_to_all_subscribers_in_order(self):
        notifier = ChangeNotifier()
        first: list[ChangeEvent] = []
        second: list[ChangeEvent] = []
        notifier.subscribe(first.append)
        notifier.subscribe(second.append)

        event = ChangeEvent(kind=ChangeKind.MUTATION, conversation_ids=["c1"])
        notifier.emit(event)

        assert first == [event]
        assert second == [event]

    def test_unsubscribe(self):
        notifier = ChangeNotifier()
        received: list[ChangeEvent] = []
        unsubscribe = notifier.subscribe(received.append)

        unsubscribe()
        unsubscribe()
        notifier.emit(ChangeEvent(kind=ChangeKind.PURGED))

        assert received == []

    def test_failing_subscriber_does_not_block_others(self):
        notifier = ChangeNotifier()
        received: list[ChangeEvent] = []

        def broken(event: ChangeEvent) -> None:
            raise RuntimeError("observer crashed")

        notifier.subscribe(broken)
        notifier.subscribe(received.append)
        notifier.emit(ChangeEvent(kind=ChangeKind.MERGE_SETTLED))

        assert len(received) == 1

    def test_failure_event_carries_report(self):
        event = ChangeEvent(kind=ChangeKind.SYNC_FAILED, error=to_error_report(NetworkFailure("offline")))

        assert event.error is not None
        assert event.error.message == "offline"
        assert event.conversation_ids == []
