"""SQLite schema for the conversation mirror.

Conversations and their emails live in two tables joined by
``conversation_id``; participant and recipient lists are stored as JSON
arrays.  A singleton ``store_meta`` row remembers which account the mirror
belongs to.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path


def init_conversation_tables(conn: sqlite3.Connection) -> None:
    """Create the conversation, email, and meta tables if they do not exist.

    Args:
        conn: An open sqlite3.Connection.
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            contact_key TEXT NOT NULL,
            display_name TEXT NOT NULL,
            participants_json TEXT NOT NULL DEFAULT '[]',
            is_group INTEGER NOT NULL DEFAULT 0,
            last_message_at TEXT NOT NULL,
            last_message_snippet TEXT NOT NULL DEFAULT '',
            is_read INTEGER NOT NULL DEFAULT 1
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS emails (
            id TEXT PRIMARY KEY,
            conversation_id TEXT NOT NULL
                REFERENCES conversations (id) ON DELETE CASCADE,
            provider_id TEXT,
            alias_ids_json TEXT NOT NULL DEFAULT '[]',
            rfc_message_id TEXT,
            in_reply_to TEXT,
            thread_id TEXT,
            sender TEXT NOT NULL,
            sender_name TEXT NOT NULL DEFAULT '',
            to_json TEXT NOT NULL DEFAULT '[]',
            cc_json TEXT NOT NULL DEFAULT '[]',
            bcc_json TEXT NOT NULL DEFAULT '[]',
            subject TEXT,
            body TEXT NOT NULL DEFAULT '',
            html_body TEXT,
            snippet TEXT NOT NULL DEFAULT '',
            timestamp TEXT NOT NULL,
            covers_from TEXT,
            covers_until TEXT,
            is_read INTEGER NOT NULL DEFAULT 0,
            is_from_me INTEGER NOT NULL DEFAULT 0,
            attachments_json TEXT NOT NULL DEFAULT '[]'
        )
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_conversations_contact_key ON conversations (contact_key)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_emails_conversation ON emails (conversation_id)"
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_emails_provider ON emails (provider_id)")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS store_meta (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            user_address TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)

    conn.commit()


def init_store_db(db_path: Path | str) -> sqlite3.Connection:
    """Open the store database with WAL mode and foreign keys, creating tables.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open sqlite3.Connection usable from the event loop thread and
        worker threads (``check_same_thread=False``).
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    init_conversation_tables(conn)
    return conn


def close_store_db(conn: sqlite3.Connection) -> None:
    """Close the store database connection."""
    conn.close()
