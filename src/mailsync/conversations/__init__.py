"""Conversation threading: participant keys, duplicate detection, and the store."""

from mailsync.conversations.dedup import (
    DEFAULT_DEDUP_WINDOW,
    find_duplicate,
    fold_duplicate,
    merge_duplicate,
)
from mailsync.conversations.participants import (
    ParticipantKey,
    display_name_for,
    key_for_participants,
    resolve_participant_key,
)
from mailsync.conversations.schema import close_store_db, init_conversation_tables, init_store_db
from mailsync.conversations.store import ConversationStore, recompute_metadata

__all__ = [
    "DEFAULT_DEDUP_WINDOW",
    "ConversationStore",
    "ParticipantKey",
    "close_store_db",
    "display_name_for",
    "find_duplicate",
    "fold_duplicate",
    "init_conversation_tables",
    "init_store_db",
    "key_for_participants",
    "merge_duplicate",
    "recompute_metadata",
    "resolve_participant_key",
]
