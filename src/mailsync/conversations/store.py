"""SQLite-backed conversation store.

Keeps the full set of ``Conversation`` aggregates in memory and mirrors every
committed change to SQLite.  Mutations run inside a transaction: they work on
copy-on-write copies of the affected conversations, the rows are written and
committed, and only then is the in-memory state swapped in and a single
change notification emitted.  A failed commit rolls back and leaves both the
database and the in-memory state exactly as they were.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta

import structlog

from mailsync.conversations.dedup import DEFAULT_DEDUP_WINDOW, fold_duplicate
from mailsync.conversations.participants import (
    ParticipantKey,
    display_name_for,
    key_for_participants,
    resolve_participant_key,
)
from mailsync.conversations.serializers import (
    CONVERSATION_COLUMNS,
    EMAIL_COLUMNS,
    conversation_to_row,
    email_to_row,
    row_to_conversation,
    row_to_email,
)
from mailsync.domain.errors import AuthRequired, NotFoundError, StorageFailure, ValidationFailure
from mailsync.domain.models import Conversation, Email, normalize_address
from mailsync.domain.types import ChangeKind
from mailsync.email.ports import ContactResolver
from mailsync.events import ChangeEvent, ChangeNotifier

logger = structlog.get_logger()


def recompute_metadata(
    conversation: Conversation,
    user_address: str,
    contacts: ContactResolver | None = None,
) -> None:
    """Recompute a conversation's denormalized fields from its emails.

    - last message timestamp and snippet come from the email with the
      greatest timestamp
    - the conversation is read only if every owned email is read
    - participants are the union of every email's sender and recipients,
      minus the user, so membership can drift as people join a thread
    - the contact key and group flag follow the participant set

    Args:
        conversation: The conversation to update in place.
        user_address: The authenticated user's address.
        contacts: Optional resolver used for the display name.
    """
    latest = conversation.latest_email
    if latest is None:
        return

    conversation.last_message_at = latest.timestamp
    conversation.last_message_snippet = latest.snippet
    conversation.is_read = all(e.is_read for e in conversation.emails)

    identity = key_for_participants(
        (a for e in conversation.emails for a in e.all_participants), user_address
    )
    conversation.participants = identity.participants
    conversation.is_group = identity.is_group
    conversation.contact_key = identity.key

    seen_names = {e.sender: e.sender_name for e in conversation.sorted_emails if e.sender_name}
    conversation.display_name = display_name_for(
        identity.participants, identity.is_group, contacts, seen_names
    )


class _Transaction:
    """Copy-on-write working set for one store transaction."""

    def __init__(self, committed: dict[str, Conversation], user_address: str | None) -> None:
        self.conversations: dict[str, Conversation] = dict(committed)
        self.changed: set[str] = set()
        self._copied: set[str] = set()
        self.user_address = user_address
        self.rebound = False

    def writable(self, conversation_id: str) -> Conversation:
        conversation = self.conversations[conversation_id]
        if conversation_id not in self._copied:
            conversation = conversation.model_copy(deep=True)
            self.conversations[conversation_id] = conversation
            self._copied.add(conversation_id)
        self.changed.add(conversation_id)
        return conversation

    def add(self, conversation: Conversation) -> None:
        self.conversations[conversation.id] = conversation
        self._copied.add(conversation.id)
        self.changed.add(conversation.id)

    def discard(self, conversation_id: str) -> None:
        self.conversations.pop(conversation_id, None)
        self.changed.add(conversation_id)

    def bind(self, user_address: str | None) -> None:
        if user_address != self.user_address:
            self.user_address = user_address
            self.rebound = True


class ConversationStore:
    """Conversation aggregates keyed by participant identity, persisted in SQLite.

    All access happens from a single owner (the event loop thread); the
    store does no locking of its own.

    Args:
        conn: An open connection whose database has the conversation tables
            (see ``init_conversation_tables``).
        notifier: Receives one ``ChangeEvent`` per committed transaction.
        contacts: Optional resolver for conversation display names.
        dedup_window: Time tolerance for the heuristic duplicate rule.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        notifier: ChangeNotifier | None = None,
        contacts: ContactResolver | None = None,
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
    ) -> None:
        self._conn = conn
        self._notifier = notifier or ChangeNotifier()
        self._contacts = contacts
        self._dedup_window = dedup_window
        self._conversations: dict[str, Conversation] = {}
        self._user_address: str | None = None
        self._txn: _Transaction | None = None
        self._load()

    @property
    def notifier(self) -> ChangeNotifier:
        return self._notifier

    @property
    def user_address(self) -> str | None:
        """The account this mirror belongs to, if one has been bound."""
        return self._user_address

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        prev_factory = self._conn.row_factory
        self._conn.row_factory = sqlite3.Row
        try:
            meta = self._conn.execute(
                "SELECT user_address FROM store_meta WHERE id = 1"
            ).fetchone()
            emails_by_conversation: dict[str, list[Email]] = {}
            for row in self._conn.execute("SELECT * FROM emails"):
                emails_by_conversation.setdefault(row["conversation_id"], []).append(
                    row_to_email(row)
                )
            conversations = {
                row["id"]: row_to_conversation(row, emails_by_conversation.get(row["id"], []))
                for row in self._conn.execute("SELECT * FROM conversations")
            }
        except sqlite3.Error as exc:
            raise StorageFailure("Failed to load conversations", cause=exc) from exc
        finally:
            self._conn.row_factory = prev_factory

        self._user_address = meta["user_address"] if meta else None
        self._conversations = conversations
        logger.info(
            "store_loaded",
            conversations=len(conversations),
            emails=sum(len(c.emails) for c in conversations.values()),
        )

    def _write(self, txn: _Transaction) -> None:
        email_placeholders = ", ".join("?" for _ in EMAIL_COLUMNS)
        conversation_placeholders = ", ".join("?" for _ in CONVERSATION_COLUMNS)
        try:
            for conversation_id in sorted(txn.changed):
                self._conn.execute(
                    "DELETE FROM emails WHERE conversation_id = ?", (conversation_id,)
                )
                conversation = txn.conversations.get(conversation_id)
                if conversation is None:
                    self._conn.execute(
                        "DELETE FROM conversations WHERE id = ?", (conversation_id,)
                    )
                    continue
                self._conn.execute(
                    f"INSERT OR REPLACE INTO conversations ({', '.join(CONVERSATION_COLUMNS)}) "
                    f"VALUES ({conversation_placeholders})",
                    conversation_to_row(conversation),
                )
                self._conn.executemany(
                    f"INSERT INTO emails ({', '.join(EMAIL_COLUMNS)}) "
                    f"VALUES ({email_placeholders})",
                    [email_to_row(e, conversation.id) for e in conversation.emails],
                )
            if txn.rebound:
                self._write_binding(txn.user_address)
            self._conn.commit()
        except sqlite3.Error as exc:
            self._conn.rollback()
            logger.error("store_commit_failed", error=str(exc), conversations=len(txn.changed))
            raise StorageFailure("Failed to save conversations", cause=exc) from exc

    def _write_binding(self, user_address: str | None) -> None:
        if user_address is None:
            self._conn.execute("DELETE FROM store_meta")
            return
        now = datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        self._conn.execute(
            "INSERT OR REPLACE INTO store_meta (id, user_address, updated_at) VALUES (1, ?, ?)",
            (user_address, now),
        )

    @contextmanager
    def _transaction(self, kind: ChangeKind) -> Iterator[_Transaction]:
        if self._txn is not None:
            # Nested inside batch(): the outer transaction commits and notifies
            yield self._txn
            return

        txn = _Transaction(self._conversations, self._user_address)
        self._txn = txn
        try:
            yield txn
            if txn.changed or txn.rebound:
                self._write(txn)
        finally:
            self._txn = None

        if txn.rebound:
            self._user_address = txn.user_address
            logger.info("store_user_bound", user=txn.user_address)
        if txn.changed:
            self._conversations = txn.conversations
            self._notifier.emit(ChangeEvent(kind=kind, conversation_ids=sorted(txn.changed)))

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Group several mutations into one commit and one notification.

        Observers see nothing until the block exits; if any mutation inside
        raises, none of them are applied.
        """
        with self._transaction(ChangeKind.MERGE_SETTLED):
            yield

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def list_conversations(self) -> list[Conversation]:
        """Return every conversation, most recent message first."""
        return sorted(
            self._conversations.values(),
            key=lambda c: (c.last_message_at, c.id),
            reverse=True,
        )

    def get(self, conversation_id: str) -> Conversation | None:
        """Return the conversation with *conversation_id*, if present."""
        return self._conversations.get(conversation_id)

    def find_by_key(self, contact_key: str) -> Conversation | None:
        """Return the conversation whose contact key equals *contact_key*."""
        return self._find_exact(self._conversations, contact_key)

    def search(self, query: str) -> list[Conversation]:
        """Case-insensitive search across names, addresses, and email content.

        Matches the display name, contact key, any participant address, and
        any owned email's subject, snippet, sender address, or sender name.
        An empty query returns every conversation.
        """
        needle = query.strip().lower()
        if not needle:
            return self.list_conversations()
        return [c for c in self.list_conversations() if _matches(c, needle)]

    def count_emails(self) -> int:
        """Total number of emails across all conversations."""
        return sum(len(c.emails) for c in self._conversations.values())

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def bind_user(self, user_address: str) -> None:
        """Record which account this mirror belongs to.

        Raises:
            ValidationFailure: If the mirror still holds another account's
                conversations; ``purge`` them first.
        """
        with self._transaction(ChangeKind.MUTATION) as txn:
            self._bind(txn, normalize_address(user_address), allow_switch=not txn.conversations)

    def upsert(self, email: Email, user_address: str) -> Conversation:
        """Insert *email* into its conversation, or merge it into a duplicate.

        Resolves the participant key, finds (or lazily creates) the
        conversation, runs duplicate detection against that conversation's
        emails, and recomputes metadata.  The first upsert binds the store to
        *user_address* in the same commit.

        Args:
            email: A normalized email.
            user_address: The authenticated user's address.

        Returns:
            The conversation that now owns the email (or its merged copy).

        Raises:
            ValidationFailure: If the store is bound to a different account.
            StorageFailure: If the change could not be committed.  Nothing
                is applied in that case.
        """
        identity = resolve_participant_key(email, user_address)

        with self._transaction(ChangeKind.MUTATION) as txn:
            self._bind(txn, normalize_address(user_address))
            existing = self._locate(txn.conversations, identity)
            if existing is None:
                conversation = Conversation(
                    display_name=identity.key,
                    contact_key=identity.key,
                    participants=identity.participants,
                    is_group=identity.is_group,
                    last_message_at=email.timestamp,
                    emails=[email],
                )
                recompute_metadata(conversation, user_address, self._contacts)
                txn.add(conversation)
                logger.debug("conversation_created", key=conversation.contact_key)
                return conversation

            folded = fold_duplicate(existing.emails, email, self._dedup_window)
            if folded is not None:
                if folded == existing.emails:
                    return existing
                conversation = txn.writable(existing.id)
                conversation.emails = folded
                logger.debug(
                    "email_merged",
                    provider_id=email.provider_id,
                    absorbed=len(existing.emails) - len(folded),
                    conversation=conversation.id,
                )
            else:
                conversation = txn.writable(existing.id)
                conversation.emails.append(email)
            recompute_metadata(conversation, user_address, self._contacts)
            return conversation

    def mark_read(self, conversation_id: str) -> Conversation:
        """Mark a conversation and all of its emails read."""
        return self._set_read(conversation_id, True)

    def mark_unread(self, conversation_id: str) -> Conversation:
        """Mark a conversation and all of its emails unread."""
        return self._set_read(conversation_id, False)

    def _set_read(self, conversation_id: str, is_read: bool) -> Conversation:
        with self._transaction(ChangeKind.MUTATION) as txn:
            if conversation_id not in txn.conversations:
                raise NotFoundError(f"Conversation not found: {conversation_id}")
            current = txn.conversations[conversation_id]
            if current.is_read == is_read and all(e.is_read == is_read for e in current.emails):
                return current
            conversation = txn.writable(conversation_id)
            conversation.emails = [
                e if e.is_read == is_read else e.model_copy(update={"is_read": is_read})
                for e in conversation.emails
            ]
            conversation.is_read = is_read
            return conversation

    def remove(self, email_id: str) -> Conversation | None:
        """Detach an email from its conversation.

        Returns:
            The updated conversation, or ``None`` if removing the email left
            it empty and it was deleted.

        Raises:
            NotFoundError: If no conversation owns *email_id*.
        """
        with self._transaction(ChangeKind.MUTATION) as txn:
            owner = next(
                (c for c in txn.conversations.values() if c.find_email(email_id) is not None),
                None,
            )
            if owner is None:
                raise NotFoundError(f"Email not found: {email_id}")
            conversation = txn.writable(owner.id)
            conversation.emails = [e for e in conversation.emails if e.id != email_id]
            if not conversation.emails:
                txn.discard(conversation.id)
                logger.debug("conversation_emptied", conversation=conversation.id)
                return None
            recompute_metadata(conversation, self._require_user(), self._contacts)
            return conversation

    def delete(self, conversation_id: str) -> None:
        """Delete a conversation together with all of its emails."""
        with self._transaction(ChangeKind.MUTATION) as txn:
            if conversation_id not in txn.conversations:
                raise NotFoundError(f"Conversation not found: {conversation_id}")
            txn.discard(conversation_id)

    def purge(self) -> None:
        """Delete every conversation and forget the bound account."""
        with self._transaction(ChangeKind.PURGED) as txn:
            for conversation_id in list(txn.conversations):
                txn.discard(conversation_id)
            txn.bind(None)
        logger.info("store_purged")

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _bind(txn: _Transaction, address: str, allow_switch: bool = False) -> None:
        if txn.user_address is not None and txn.user_address != address and not allow_switch:
            raise ValidationFailure(
                f"Conversation store belongs to {txn.user_address}, not {address}"
            )
        txn.bind(address)

    def _require_user(self) -> str:
        if self._user_address is None:
            raise AuthRequired("No account is bound to the conversation store")
        return self._user_address

    @staticmethod
    def _find_exact(conversations: dict[str, Conversation], key: str) -> Conversation | None:
        matches = [c for c in conversations.values() if c.contact_key == key]
        if not matches:
            return None
        return max(matches, key=lambda c: (c.last_message_at, c.id))

    def _locate(
        self, conversations: dict[str, Conversation], identity: ParticipantKey
    ) -> Conversation | None:
        """Find the conversation an email with *identity* belongs to.

        Exact key match first.  A group email otherwise joins a group
        conversation whose participant set contains it or is contained by it
        (someone added to, or dropped from, a reply chain).  One-to-one
        conversations only ever match exactly.
        """
        exact = self._find_exact(conversations, identity.key)
        if exact is not None or not identity.is_group:
            return exact

        wanted = set(identity.participants)
        candidates = [
            c
            for c in conversations.values()
            if c.is_group and (set(c.participants) <= wanted or wanted <= set(c.participants))
        ]
        if not candidates:
            return None
        return max(
            candidates,
            key=lambda c: (len(wanted & set(c.participants)), c.last_message_at, c.id),
        )


def _matches(conversation: Conversation, needle: str) -> bool:
    if needle in conversation.display_name.lower() or needle in conversation.contact_key:
        return True
    if any(needle in p for p in conversation.participants):
        return True
    for email in conversation.emails:
        if (
            needle in (email.subject or "").lower()
            or needle in email.snippet.lower()
            or needle in email.sender
            or needle in email.sender_name.lower()
        ):
            return True
    return False
