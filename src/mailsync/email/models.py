"""Pydantic v2 models for outgoing mail.

``OutboundEmail`` is what the user composes; ``validate_outbound`` rejects
malformed input before anything reaches the provider or the store.
"""

from __future__ import annotations

import re
from email.utils import make_msgid

from pydantic import BaseModel, ConfigDict, Field, field_validator

from mailsync.domain.errors import ValidationFailure
from mailsync.domain.models import AttachmentInfo, normalize_address

EMAIL_PATTERN = re.compile(r"^[A-Z0-9a-z._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,64}$")


def _new_message_id() -> str:
    return make_msgid(domain="mailsync.local")


class OutboundEmail(BaseModel):
    """An email to be sent on the user's behalf.

    When ``thread_id``, ``in_reply_to``, and ``references`` are provided,
    the email is threaded as a reply.  Otherwise it starts a new thread.
    ``rfc_message_id`` is generated up front so the local copy and the
    synced server copy share a ``Message-ID``.
    """

    model_config = ConfigDict(frozen=True)

    to: list[str]
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str | None = None
    body: str = ""
    thread_id: str | None = None
    in_reply_to: str | None = None  # RFC 2822 Message-ID to reply to
    references: str | None = None  # Space-separated RFC 2822 Message-IDs
    rfc_message_id: str = Field(default_factory=_new_message_id)
    attachments: list[AttachmentInfo] = Field(default_factory=list)

    @field_validator("to", "cc", "bcc")
    @classmethod
    def addresses_are_normalized(cls, v: list[str]) -> list[str]:
        """Lower-case addresses and drop blanks."""
        return [normalize_address(a) for a in v if a.strip()]

    @property
    def recipients(self) -> list[str]:
        return list(dict.fromkeys([*self.to, *self.cc, *self.bcc]))


def is_valid_address(address: str) -> bool:
    """Return True if *address* looks like a deliverable email address."""
    return EMAIL_PATTERN.match(address.strip()) is not None


def validate_outbound(outbound: OutboundEmail) -> None:
    """Reject an outbound email that must not be sent.

    Raises:
        ValidationFailure: If there are no recipients, any address is
            malformed, or there is neither a body nor an attachment.
    """
    if not outbound.recipients:
        raise ValidationFailure("At least one recipient is required")
    invalid = [a for a in outbound.recipients if not is_valid_address(a)]
    if invalid:
        raise ValidationFailure(f"Invalid email address: {', '.join(invalid)}")
    if not outbound.body.strip() and not outbound.attachments:
        raise ValidationFailure("Message body is empty")
