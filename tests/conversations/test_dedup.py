"""Tests for duplicate detection and merging."""

from __future__ import annotations

from datetime import timedelta

from mailsync.conversations.dedup import DEFAULT_DEDUP_WINDOW, find_duplicate, fold_duplicate, merge_duplicate

USER = "me@example.com"


class TestFindDuplicate:
    """Rule priority and the time window."""

    def test_provider_id_match(self, make_email) -> None:
        stored = make_email(provider_id="m1", minutes=0)
        incoming = make_email(provider_id="m1", minutes=30, snippet="edited")

        assert find_duplicate(incoming, [stored]) is stored

    def test_alias_id_match(self, make_email) -> None:
        stored = make_email(provider_id="m1", alias_ids=["m2"])
        incoming = make_email(provider_id="m2", minutes=60)

        assert find_duplicate(incoming, [stored]) is stored

    def test_rfc_message_id_match_beats_window(self, make_email) -> None:
        stored = make_email(provider_id=None, rfc_message_id="x@local", minutes=0)
        incoming = make_email(provider_id="m9", rfc_message_id="x@local", minutes=90)

        assert find_duplicate(incoming, [stored]) is stored

    def test_within_window_is_duplicate(self, make_email) -> None:
        stored = make_email(provider_id=None, minutes=0)
        incoming = make_email(provider_id="m1", minutes=4)

        assert find_duplicate(incoming, [stored]) is stored

    def test_window_edge_is_inclusive(self, make_email) -> None:
        stored = make_email(provider_id=None, minutes=0)
        incoming = make_email(provider_id="m1", minutes=5)

        assert find_duplicate(incoming, [stored], DEFAULT_DEDUP_WINDOW) is stored

    def test_outside_window_is_distinct(self, make_email) -> None:
        stored = make_email(provider_id="m1", minutes=0)
        incoming = make_email(provider_id="m2", minutes=6)

        assert find_duplicate(incoming, [stored]) is None

    def test_different_sender_is_distinct(self, make_email) -> None:
        stored = make_email(sender="alice@x.com", provider_id="m1")
        incoming = make_email(sender="bob@x.com", provider_id="m2", minutes=1)

        assert find_duplicate(incoming, [stored]) is None

    def test_different_recipients_is_distinct(self, make_email) -> None:
        stored = make_email(to=[USER], provider_id="m1")
        incoming = make_email(to=[USER, "bob@x.com"], provider_id="m2", minutes=1)

        assert find_duplicate(incoming, [stored]) is None

    def test_closest_timestamp_wins(self, make_email) -> None:
        far = make_email(provider_id="m1", minutes=0)
        near = make_email(provider_id="m2", minutes=3)
        incoming = make_email(provider_id="m3", minutes=4)

        assert find_duplicate(incoming, [far, near]) is near

    def test_custom_window(self, make_email) -> None:
        stored = make_email(provider_id="m1", minutes=0)
        incoming = make_email(provider_id="m2", minutes=2)

        assert find_duplicate(incoming, [stored], timedelta(minutes=1)) is None

    def test_no_existing_emails(self, make_email) -> None:
        assert find_duplicate(make_email(), []) is None

    def test_window_measured_from_merged_span(self, make_email) -> None:
        stored = merge_duplicate(make_email(provider_id="m1", minutes=0), make_email(provider_id="m2", minutes=4))
        incoming = make_email(provider_id="m3", minutes=8)

        assert stored.span == (make_email(minutes=0).timestamp, make_email(minutes=4).timestamp)
        assert find_duplicate(incoming, [stored]) is stored


class TestMergeDuplicate:
    """Folding two copies into one record."""

    def test_local_copy_takes_provider_identity(self, make_email) -> None:
        local = make_email(provider_id=None, minutes=0, snippet="draft", is_read=True)
        server = make_email(provider_id="m1", minutes=1, snippet="server", is_read=False)

        merged = merge_duplicate(local, server)

        assert merged.id == local.id
        assert merged.provider_id == "m1"
        assert merged.snippet == "server"
        assert merged.timestamp == server.timestamp
        assert merged.alias_ids == []

    def test_read_flag_is_sticky_across_distinct_copies(self, make_email) -> None:
        stored = make_email(provider_id="m1", is_read=False)
        incoming = make_email(provider_id="m2", minutes=2, is_read=True)

        assert merge_duplicate(stored, incoming).is_read is True

    def test_placeholder_upgrade_keeps_local_read_flag(self, make_email) -> None:
        local = make_email(provider_id=None, rfc_message_id="<x@mail>", is_read=True)
        server = make_email(provider_id="m1", rfc_message_id="<x@mail>", minutes=1, is_read=False)

        assert merge_duplicate(local, server).is_read is True

    def test_refetched_message_keeps_stored_read_state(self, make_email) -> None:
        stored = make_email(provider_id="m1", is_read=False)
        refetched = make_email(provider_id="m1", is_read=True)

        assert merge_duplicate(stored, refetched) == stored

    def test_message_id_match_keeps_stored_read_state(self, make_email) -> None:
        stored = make_email(provider_id="m1", rfc_message_id="<x@mail>", is_read=False)
        other_copy = make_email(provider_id="m2", rfc_message_id="<x@mail>", minutes=9, is_read=True)

        assert merge_duplicate(stored, other_copy).is_read is False

    def test_second_provider_id_kept_as_alias(self, make_email) -> None:
        stored = make_email(provider_id="m2", minutes=1)
        incoming = make_email(provider_id="m1", minutes=0)

        merged = merge_duplicate(stored, incoming)

        assert merged.provider_id == "m1"
        assert merged.alias_ids == ["m2"]
        assert merged.id == stored.id

    def test_merge_is_idempotent(self, make_email) -> None:
        stored = make_email(provider_id=None)
        incoming = make_email(provider_id="m1", minutes=2)

        once = merge_duplicate(stored, incoming)

        assert merge_duplicate(once, incoming) == once

    def test_content_independent_of_arrival_order(self, make_email) -> None:
        a = make_email(provider_id="m1", minutes=0, snippet="first")
        b = make_email(provider_id="m2", minutes=2, snippet="second")

        ab = merge_duplicate(a, b)
        ba = merge_duplicate(b, a)

        assert ab.model_dump(exclude={"id"}) == ba.model_dump(exclude={"id"})

    def test_span_covers_both_copies(self, make_email) -> None:
        merged = merge_duplicate(make_email(provider_id="m2", minutes=3), make_email(provider_id="m1", minutes=0))

        assert merged.timestamp == make_email(minutes=0).timestamp
        assert merged.covers_from is None
        assert merged.covers_until == make_email(minutes=3).timestamp


class TestFoldDuplicate:
    """Folding an incoming email into a conversation's email list."""

    def test_no_match_returns_none(self, make_email) -> None:
        emails = [make_email(provider_id="m1", minutes=0)]

        assert fold_duplicate(emails, make_email(provider_id="m2", minutes=30)) is None

    def test_bridging_email_absorbs_both_neighbours(self, make_email) -> None:
        first = make_email(provider_id="m1", minutes=0, snippet="first")
        last = make_email(provider_id="m3", minutes=8, snippet="last")

        folded = fold_duplicate([first, last], make_email(provider_id="m2", minutes=4))

        assert folded is not None
        (merged,) = folded
        assert merged.known_provider_ids == {"m1", "m2", "m3"}
        assert merged.snippet == "first"
        assert merged.span == (first.timestamp, last.timestamp)

    def test_unrelated_emails_kept_in_place(self, make_email) -> None:
        other = make_email(sender="bob@example.com", provider_id="b1", minutes=2)
        stored = make_email(provider_id="m1", minutes=0)

        folded = fold_duplicate([other, stored], make_email(provider_id="m1", minutes=0, is_read=True))

        assert folded == [other, stored]
