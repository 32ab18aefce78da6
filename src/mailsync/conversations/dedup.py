"""Duplicate detection and merging for incoming emails.

The same logical message can reach the store more than once: an optimistic
local copy followed by the synced server copy, or two overlapping poll
cycles returning the same message.  ``find_duplicate`` decides whether an
incoming email is already represented in a conversation; ``merge_duplicate``
folds the two copies into one record.

The time-window rule is lossy: two genuinely distinct messages with the same
sender and recipients sent within the window collapse into one.  The window
is configurable (``Settings.dedup_window_seconds``) for that reason.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from mailsync.domain.models import Email

DEFAULT_DEDUP_WINDOW = timedelta(minutes=5)


def _authority(email: Email) -> tuple[int, float, str]:
    """Sort key: lower means more authoritative.

    Provider-sourced copies beat local ones; between two provider copies the
    earlier timestamp, then the lower provider id, wins.  The ordering is
    total so merging is commutative.
    """
    return (
        1 if email.is_local else 0,
        email.timestamp.timestamp(),
        email.provider_id or "",
    )


def _window_gap(a: Email, b: Email) -> timedelta:
    """Distance between the timestamp spans of two records; zero if they overlap."""
    a_start, a_end = a.span
    b_start, b_end = b.span
    return max(a_start - b_end, b_start - a_end, timedelta(0))


def _same_message(a: Email, b: Email) -> bool:
    if a.known_provider_ids & b.known_provider_ids:
        return True
    return bool(a.rfc_message_id) and a.rfc_message_id == b.rfc_message_id


def find_duplicate(
    candidate: Email,
    existing: Iterable[Email],
    window: timedelta = DEFAULT_DEDUP_WINDOW,
) -> Email | None:
    """Find the existing email that *candidate* duplicates, if any.

    Rules are applied in priority order across all of *existing*:

    1. Provider id match (including ids merged in earlier).
    2. RFC ``Message-ID`` match, when both copies carry one.
    3. Same sender, same recipient set, and timestamp spans at most *window*
       apart.  The closest span wins.

    Rule 3 compares spans rather than single timestamps, so a record that
    already absorbed a chain of copies keeps matching anything within the
    window of any member of that chain.

    Args:
        candidate: The incoming, normalized email.
        existing: Emails already owned by the target conversation.
        window: Tolerance for rule 3.

    Returns:
        The matching existing email, or ``None``.
    """
    existing = list(existing)

    candidate_ids = candidate.known_provider_ids
    if candidate_ids:
        for email in existing:
            if candidate_ids & email.known_provider_ids:
                return email

    if candidate.rfc_message_id:
        for email in existing:
            if email.rfc_message_id and email.rfc_message_id == candidate.rfc_message_id:
                return email

    recipients = set(candidate.recipients)
    best: Email | None = None
    best_gap: timedelta | None = None
    for email in existing:
        if email.sender != candidate.sender or set(email.recipients) != recipients:
            continue
        gap = _window_gap(email, candidate)
        if gap > window:
            continue
        if best is None or best_gap is None or (gap, _authority(email)) < (best_gap, _authority(best)):
            best, best_gap = email, gap
    return best


def merge_duplicate(existing: Email, incoming: Email) -> Email:
    """Merge *incoming* into *existing*, keeping the existing local identity.

    The more authoritative copy supplies content, timestamp, and snippet.  A
    local placeholder picks up the definitive provider id; any other provider
    id is remembered in ``alias_ids`` so the next fetch matches on rule 1.
    The merged span covers both copies.

    Read state: a provider-sourced record that sees the same message again
    keeps its own flag, so a local ``mark_unread`` survives the next poll.
    Otherwise the flag is sticky: once either copy is read, the merged record
    is read.

    Args:
        existing: The stored record.
        incoming: The duplicate copy that just arrived.

    Returns:
        A new ``Email`` that replaces *existing* in its conversation.
    """
    primary = existing if _authority(existing) <= _authority(incoming) else incoming

    provider_ids = existing.known_provider_ids | incoming.known_provider_ids
    provider_id = primary.provider_id
    alias_ids = sorted(provider_ids - {provider_id}) if provider_id else []

    start = min(existing.span[0], incoming.span[0])
    end = max(existing.span[1], incoming.span[1])

    if not existing.is_local and _same_message(existing, incoming):
        is_read = existing.is_read
    else:
        is_read = existing.is_read or incoming.is_read

    return primary.model_copy(
        update={
            "id": existing.id,
            "provider_id": provider_id,
            "alias_ids": alias_ids,
            "rfc_message_id": primary.rfc_message_id or existing.rfc_message_id or incoming.rfc_message_id,
            "in_reply_to": primary.in_reply_to or existing.in_reply_to or incoming.in_reply_to,
            "thread_id": primary.thread_id or existing.thread_id or incoming.thread_id,
            "covers_from": start if start != primary.timestamp else None,
            "covers_until": end if end != primary.timestamp else None,
            "is_read": is_read,
            "is_from_me": existing.is_from_me or incoming.is_from_me,
        }
    )


def fold_duplicate(
    emails: list[Email],
    incoming: Email,
    window: timedelta = DEFAULT_DEDUP_WINDOW,
) -> list[Email] | None:
    """Fold *incoming* into the duplicate it matches among *emails*.

    Merging widens the record's span, which can bring other records of the
    conversation within the window.  Those are folded in as well until no
    record matches, so the resulting clusters do not depend on the order in
    which copies arrived.

    Args:
        emails: Emails owned by the target conversation.
        incoming: The normalized email being applied.
        window: Tolerance for the heuristic rule.

    Returns:
        The conversation's new email list, or ``None`` when *incoming*
        duplicates nothing and should be appended instead.
    """
    duplicate = find_duplicate(incoming, emails, window)
    if duplicate is None:
        return None

    merged = merge_duplicate(duplicate, incoming)
    absorbed: set[str] = set()
    remaining = [e for e in emails if e.id != duplicate.id]
    while (neighbour := find_duplicate(merged, remaining, window)) is not None:
        merged = merge_duplicate(merged, neighbour)
        absorbed.add(neighbour.id)
        remaining = [e for e in remaining if e.id != neighbour.id]

    return [merged if e.id == duplicate.id else e for e in emails if e.id not in absorbed]
