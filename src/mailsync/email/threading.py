"""Reply addressing and threading headers.

Provides helpers for:
- Working out who a reply (or reply-all) goes to, excluding the user
- Building a threaded ``OutboundEmail`` in response to a stored ``Email``
"""

from __future__ import annotations

from mailsync.domain.models import Email, normalize_address
from mailsync.email.models import OutboundEmail


def reply_recipients(email: Email, user_address: str) -> list[str]:
    """Recipients of a plain reply to *email*.

    Replying to one's own message goes back to its original recipients;
    otherwise the reply goes to the sender.
    """
    user = normalize_address(user_address)
    if email.sender == user:
        return [a for a in email.to if a != user]
    return [email.sender]


def reply_all_recipients(email: Email, user_address: str) -> tuple[list[str], list[str]]:
    """``(to, cc)`` for a reply-all to *email*, excluding the user.

    The sender and original To recipients go on To; original Cc recipients
    stay on Cc.  Bcc recipients are never copied.
    """
    user = normalize_address(user_address)
    to = list(dict.fromkeys(a for a in [email.sender, *email.to] if a != user))
    cc = [a for a in dict.fromkeys(email.cc) if a != user and a not in to]
    return to, cc


def build_reply(email: Email, user_address: str, body: str, reply_all: bool = False) -> OutboundEmail:
    """Build a threaded reply to *email*.

    The ``Subject`` is prefixed with ``Re: `` only if not already present
    (case-insensitive).  ``In-Reply-To`` and ``References`` point at the
    original ``Message-ID`` when it has one.

    Args:
        email: The message being replied to.
        user_address: The authenticated user's address.
        body: Plain-text body of the reply.
        reply_all: Address everyone on the original message.

    Returns:
        An ``OutboundEmail`` ready for validation and sending.
    """
    if reply_all:
        to, cc = reply_all_recipients(email, user_address)
    else:
        to, cc = reply_recipients(email, user_address), []

    subject = email.subject or ""
    if not subject.lower().startswith("re:"):
        subject = f"Re: {subject}".strip()

    parent = f"<{email.rfc_message_id}>" if email.rfc_message_id else None
    return OutboundEmail(
        to=to,
        cc=cc,
        subject=subject,
        body=body,
        thread_id=email.thread_id,
        in_reply_to=parent,
        references=parent,
    )
