"""Collaborator interfaces consumed by the store and the sync orchestrator.

Implementations are injected at construction; nothing in the engine looks
them up globally.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from mailsync.email.models import OutboundEmail

# A provider message as returned by the Gmail API (``format="full"``)
RawMessage = dict[str, Any]


class MailProvider(Protocol):
    """Remote mailbox operations.

    All methods are blocking; the orchestrator runs them in a worker thread.
    Failures are reported as ``AuthRequired``, ``NetworkFailure`` or
    ``ProviderQuotaExceeded``.
    """

    def fetch_messages(self, max_count: int) -> list[RawMessage]:
        """Return up to *max_count* of the most recent provider messages."""
        ...

    def send_message(self, outbound: OutboundEmail) -> dict[str, Any]:
        """Send *outbound* and return the provider response."""
        ...

    def current_user_address(self) -> str:
        """Return the authenticated account's address."""
        ...


class ContactResolver(Protocol):
    """Best-effort address book lookup."""

    def resolve_contact_name(self, address: str) -> str | None:
        """Return a display name for *address*, or ``None`` if unknown."""
        ...


class StaticContactResolver:
    """``ContactResolver`` backed by a fixed address-to-name mapping."""

    def __init__(self, names: dict[str, str] | None = None) -> None:
        self._names = {k.strip().lower(): v for k, v in (names or {}).items()}

    def resolve_contact_name(self, address: str) -> str | None:
        return self._names.get(address.strip().lower())
