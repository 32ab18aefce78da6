"""Row conversion helpers between SQLite and the conversation domain models.

List fields are stored as JSON arrays; datetimes as ISO 8601 strings with
their UTC offset so ordering survives a round-trip.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Any

from mailsync.domain.models import AttachmentInfo, Conversation, Email

CONVERSATION_COLUMNS = (
    "id",
    "contact_key",
    "display_name",
    "participants_json",
    "is_group",
    "last_message_at",
    "last_message_snippet",
    "is_read",
)

EMAIL_COLUMNS = (
    "id",
    "conversation_id",
    "provider_id",
    "alias_ids_json",
    "rfc_message_id",
    "in_reply_to",
    "thread_id",
    "sender",
    "sender_name",
    "to_json",
    "cc_json",
    "bcc_json",
    "subject",
    "body",
    "html_body",
    "snippet",
    "timestamp",
    "covers_from",
    "covers_until",
    "is_read",
    "is_from_me",
    "attachments_json",
)


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def conversation_to_row(conversation: Conversation) -> tuple[Any, ...]:
    """Flatten a conversation (without its emails) in ``CONVERSATION_COLUMNS`` order."""
    return (
        conversation.id,
        conversation.contact_key,
        conversation.display_name,
        json.dumps(conversation.participants),
        int(conversation.is_group),
        conversation.last_message_at.isoformat(),
        conversation.last_message_snippet,
        int(conversation.is_read),
    )


def email_to_row(email: Email, conversation_id: str) -> tuple[Any, ...]:
    """Flatten an email in ``EMAIL_COLUMNS`` order."""
    return (
        email.id,
        conversation_id,
        email.provider_id,
        json.dumps(email.alias_ids),
        email.rfc_message_id,
        email.in_reply_to,
        email.thread_id,
        email.sender,
        email.sender_name,
        json.dumps(email.to),
        json.dumps(email.cc),
        json.dumps(email.bcc),
        email.subject,
        email.body,
        email.html_body,
        email.snippet,
        email.timestamp.isoformat(),
        _isoformat(email.covers_from),
        _isoformat(email.covers_until),
        int(email.is_read),
        int(email.is_from_me),
        json.dumps([a.model_dump() for a in email.attachments]),
    )


def row_to_email(row: sqlite3.Row) -> Email:
    """Rebuild an ``Email`` from an ``emails`` row."""
    return Email(
        id=row["id"],
        provider_id=row["provider_id"],
        alias_ids=json.loads(row["alias_ids_json"]),
        rfc_message_id=row["rfc_message_id"],
        in_reply_to=row["in_reply_to"],
        thread_id=row["thread_id"],
        sender=row["sender"],
        sender_name=row["sender_name"],
        to=json.loads(row["to_json"]),
        cc=json.loads(row["cc_json"]),
        bcc=json.loads(row["bcc_json"]),
        subject=row["subject"],
        body=row["body"],
        html_body=row["html_body"],
        snippet=row["snippet"],
        timestamp=datetime.fromisoformat(row["timestamp"]),
        covers_from=_parse_datetime(row["covers_from"]),
        covers_until=_parse_datetime(row["covers_until"]),
        is_read=bool(row["is_read"]),
        is_from_me=bool(row["is_from_me"]),
        attachments=[AttachmentInfo(**a) for a in json.loads(row["attachments_json"])],
    )


def row_to_conversation(row: sqlite3.Row, emails: list[Email]) -> Conversation:
    """Rebuild a ``Conversation`` from a ``conversations`` row and its emails."""
    return Conversation(
        id=row["id"],
        contact_key=row["contact_key"],
        display_name=row["display_name"],
        participants=json.loads(row["participants_json"]),
        is_group=bool(row["is_group"]),
        last_message_at=datetime.fromisoformat(row["last_message_at"]),
        last_message_snippet=row["last_message_snippet"],
        is_read=bool(row["is_read"]),
        emails=emails,
    )
