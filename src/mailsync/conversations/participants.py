"""Participant key resolution and conversation display names.

The participant key is the canonical, order-independent identity of "who a
conversation is with": every address on a message except the authenticated
user, lower-cased, deduplicated, sorted, and joined.
"""

from __future__ import annotations

from collections.abc import Iterable

from pydantic import BaseModel, ConfigDict

from mailsync.domain.models import Email, normalize_address
from mailsync.domain.types import PARTICIPANT_KEY_SEPARATOR
from mailsync.email.ports import ContactResolver

# Number of names shown before a group display name collapses to "+N"
MAX_GROUP_NAMES = 3


class ParticipantKey(BaseModel):
    """Resolved identity of a conversation."""

    model_config = ConfigDict(frozen=True)

    key: str
    participants: list[str]
    is_group: bool


def key_for_participants(addresses: Iterable[str], user_address: str) -> ParticipantKey:
    """Build the canonical key for an arbitrary set of addresses.

    Args:
        addresses: Addresses in any order or casing; duplicates allowed.
        user_address: The authenticated user's address, removed from the set.

    Returns:
        The ``ParticipantKey``.  When nothing remains after removing the
        user (a note-to-self), the key is the user's own address.
    """
    user = normalize_address(user_address)
    participants = sorted(
        {normalize_address(a) for a in addresses if a.strip()} - {user}
    )
    if not participants:
        return ParticipantKey(key=user, participants=[user], is_group=False)
    return ParticipantKey(
        key=PARTICIPANT_KEY_SEPARATOR.join(participants),
        participants=participants,
        is_group=len(participants) > 1,
    )


def resolve_participant_key(email: Email, user_address: str) -> ParticipantKey:
    """Resolve the conversation identity for a single email.

    Args:
        email: A normalized email.
        user_address: The authenticated user's address.

    Returns:
        The ``ParticipantKey`` for the sender plus all recipients.
    """
    return key_for_participants(email.all_participants, user_address)


def display_name_for(
    participants: list[str],
    is_group: bool,
    contacts: ContactResolver | None = None,
    fallback_names: dict[str, str] | None = None,
) -> str:
    """Compute a human-readable conversation name.

    Names are looked up through *contacts* first, then *fallback_names*
    (display names seen on message headers), then the raw address.  Groups
    show at most three names followed by ``+N`` for the rest.
    """
    fallback_names = fallback_names or {}

    def _name(address: str) -> str:
        resolved = contacts.resolve_contact_name(address) if contacts is not None else None
        return resolved or fallback_names.get(address) or address

    if not is_group:
        return _name(participants[0]) if participants else ""

    names = [_name(p) for p in participants[:MAX_GROUP_NAMES]]
    label = ", ".join(names)
    if len(participants) > MAX_GROUP_NAMES:
        label += f" +{len(participants) - MAX_GROUP_NAMES}"
    return label
