"""Conversion of raw Gmail messages into canonical ``Email`` records.

Addresses are trimmed and lower-cased for identity; display names are kept
separately.  Threading headers are preserved so duplicate detection can
match on ``Message-ID``.
"""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import getaddresses

from pydantic import ValidationError

from mailsync.domain.errors import ValidationFailure
from mailsync.domain.models import Email, normalize_address
from mailsync.domain.types import SENT_LABEL, UNREAD_LABEL
from mailsync.email.models import OutboundEmail
from mailsync.email.parser import make_snippet, parse_payload
from mailsync.email.ports import RawMessage


class NormalizationError(ValidationFailure):
    """Raised when a raw provider message cannot become an ``Email``."""


def _headers(raw: RawMessage) -> dict[str, str]:
    payload = raw.get("payload") or {}
    # Header names are case-insensitive; the first occurrence wins
    headers: dict[str, str] = {}
    for header in payload.get("headers", []):
        headers.setdefault(header.get("name", "").lower(), header.get("value", ""))
    return headers


def _addresses(value: str) -> list[tuple[str, str]]:
    return [(name.strip(), normalize_address(addr)) for name, addr in getaddresses([value]) if addr.strip()]


def _strip_angle_brackets(value: str | None) -> str | None:
    if not value:
        return None
    stripped = value.strip().strip("<>").strip()
    return stripped or None


def _timestamp(raw: RawMessage) -> datetime:
    try:
        millis = int(raw.get("internalDate", 0))
    except (TypeError, ValueError) as exc:
        raise NormalizationError(f"Invalid internalDate on message {raw.get('id')}") from exc
    return datetime.fromtimestamp(millis / 1000, tz=UTC)


def normalize_message(raw: RawMessage, user_address: str) -> Email:
    """Convert a ``format="full"`` Gmail message into an ``Email``.

    - ``UNREAD`` absent from the labels means the message is read
    - the ``SENT`` label, or the sender being the user, marks it as from me
    - ``internalDate`` (milliseconds since epoch) is the timestamp

    Args:
        raw: The Gmail API message resource.
        user_address: The authenticated user's address.

    Returns:
        The canonical ``Email``.

    Raises:
        NormalizationError: If the message has no id or no sender.
    """
    message_id = raw.get("id")
    if not message_id:
        raise NormalizationError("Message is missing its provider id")

    headers = _headers(raw)
    senders = _addresses(headers.get("from", ""))
    if not senders:
        raise NormalizationError(f"Message {message_id} has no sender")
    sender_name, sender = senders[0]

    labels = set(raw.get("labelIds") or [])
    parsed = parse_payload(raw.get("payload") or {})

    try:
        return Email(
            provider_id=message_id,
            rfc_message_id=_strip_angle_brackets(headers.get("message-id")),
            in_reply_to=_strip_angle_brackets(headers.get("in-reply-to")),
            thread_id=raw.get("threadId"),
            sender=sender,
            sender_name=sender_name,
            to=[addr for _, addr in _addresses(headers.get("to", ""))],
            cc=[addr for _, addr in _addresses(headers.get("cc", ""))],
            bcc=[addr for _, addr in _addresses(headers.get("bcc", ""))],
            subject=headers.get("subject") or None,
            body=parsed.text_body,
            html_body=parsed.html_body,
            snippet=make_snippet(parsed.text_body, raw.get("snippet", "")),
            timestamp=_timestamp(raw),
            is_read=UNREAD_LABEL not in labels,
            is_from_me=SENT_LABEL in labels or sender == normalize_address(user_address),
            attachments=parsed.attachments,
        )
    except ValidationError as exc:
        raise NormalizationError(f"Message {message_id} is malformed: {exc}") from exc


def email_from_outbound(
    outbound: OutboundEmail,
    user_address: str,
    sent_at: datetime | None = None,
) -> Email:
    """Build the optimistic local copy of a message the user just sent.

    The copy is read and from the user.  It carries the outbound
    ``Message-ID`` so the server copy is recognized as a duplicate on the
    next sync.
    """
    return Email(
        rfc_message_id=_strip_angle_brackets(outbound.rfc_message_id),
        in_reply_to=_strip_angle_brackets(outbound.in_reply_to),
        thread_id=outbound.thread_id,
        sender=user_address,
        to=outbound.to,
        cc=outbound.cc,
        bcc=outbound.bcc,
        subject=outbound.subject,
        body=outbound.body,
        snippet=make_snippet(outbound.body),
        timestamp=sent_at or datetime.now(tz=UTC),
        is_read=True,
        is_from_me=True,
        attachments=outbound.attachments,
    )
