"""Pydantic v2 models for the conversation domain.

``Email`` is frozen: the only mutation after creation is a read-state change,
which produces a copy via ``model_copy``.  ``Conversation`` is a mutable
aggregate owned by the store.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_address(address: str) -> str:
    """Return the comparison form of an email address (trimmed, lower-cased)."""
    return address.strip().lower()


def _new_id() -> str:
    return uuid.uuid4().hex


def _chronological_key(email: Email) -> tuple[datetime, str, str]:
    # Ties are broken on content so the result never depends on insertion order
    return (email.timestamp, email.provider_id or "", email.snippet)


class AttachmentInfo(BaseModel):
    """Metadata for an attachment part; the content itself is never stored."""

    model_config = ConfigDict(frozen=True)

    attachment_id: str
    filename: str
    mime_type: str = "application/octet-stream"
    size: int = 0


class Email(BaseModel):
    """One message, either normalized from the provider or composed locally.

    ``provider_id`` is ``None`` for an optimistic local copy that has not been
    matched against its server-side counterpart yet.  ``id`` is the local
    identity and never changes, even when a duplicate copy is merged in.
    ``covers_from`` and ``covers_until`` are only set once copies with other
    timestamps have been merged in.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    provider_id: str | None = None
    alias_ids: list[str] = Field(default_factory=list)
    rfc_message_id: str | None = None
    in_reply_to: str | None = None
    thread_id: str | None = None
    sender: str
    sender_name: str = ""
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str | None = None
    body: str = ""
    html_body: str | None = None
    snippet: str = ""
    timestamp: datetime
    covers_from: datetime | None = None
    covers_until: datetime | None = None
    is_read: bool = False
    is_from_me: bool = False
    attachments: list[AttachmentInfo] = Field(default_factory=list)

    @field_validator("sender")
    @classmethod
    def sender_is_normalized(cls, v: str) -> str:
        """Lower-case the sender and reject an empty address."""
        normalized = normalize_address(v)
        if not normalized:
            raise ValueError("sender must not be empty")
        return normalized

    @field_validator("to", "cc", "bcc")
    @classmethod
    def recipients_are_normalized(cls, v: list[str]) -> list[str]:
        """Lower-case recipient addresses, dropping blanks but keeping order."""
        return [normalize_address(a) for a in v if a.strip()]

    @field_validator("timestamp", "covers_from", "covers_until")
    @classmethod
    def timestamp_must_be_aware(cls, v: datetime | None) -> datetime | None:
        """Reject naive datetimes so comparisons across sources are safe."""
        if v is not None and v.tzinfo is None:
            raise ValueError("timestamp must be timezone-aware")
        return v

    @property
    def is_local(self) -> bool:
        """True while this is an unsynced local copy."""
        return self.provider_id is None

    @property
    def span(self) -> tuple[datetime, datetime]:
        """Earliest and latest timestamp among the copies merged into this record."""
        return (self.covers_from or self.timestamp, self.covers_until or self.timestamp)

    @property
    def known_provider_ids(self) -> set[str]:
        """Every provider id this record stands for."""
        ids = set(self.alias_ids)
        if self.provider_id is not None:
            ids.add(self.provider_id)
        return ids

    @property
    def recipients(self) -> list[str]:
        """All recipients (to, cc, bcc) in order, without duplicates."""
        return list(dict.fromkeys([*self.to, *self.cc, *self.bcc]))

    @property
    def all_participants(self) -> list[str]:
        """Sender followed by every recipient, without duplicates."""
        return list(dict.fromkeys([self.sender, *self.recipients]))

    @property
    def display_content(self) -> str:
        """Best available content for display: HTML, then body, then snippet."""
        if self.html_body and self.html_body.strip():
            return self.html_body
        if self.body.strip():
            return self.body
        return self.snippet


class Conversation(BaseModel):
    """A chat-style thread of emails sharing one participant identity."""

    id: str = Field(default_factory=_new_id)
    display_name: str
    contact_key: str
    participants: list[str]
    is_group: bool = False
    last_message_at: datetime
    last_message_snippet: str = ""
    is_read: bool = True
    emails: list[Email] = Field(default_factory=list)

    @property
    def sorted_emails(self) -> list[Email]:
        """Owned emails in chronological order."""
        return sorted(self.emails, key=_chronological_key)

    @property
    def latest_email(self) -> Email | None:
        """The email with the greatest timestamp, if any."""
        if not self.emails:
            return None
        return max(self.emails, key=_chronological_key)

    @property
    def unread_count(self) -> int:
        """Number of unread owned emails."""
        return sum(1 for e in self.emails if not e.is_read)

    def find_email(self, email_id: str) -> Email | None:
        """Return the owned email with local id *email_id*, if present."""
        for email in self.emails:
            if email.id == email_id:
                return email
        return None
