"""Tests for the store schema and row serializers."""

from __future__ import annotations

import sqlite3

from mailsync.conversations.schema import init_conversation_tables
from mailsync.conversations.serializers import (
    CONVERSATION_COLUMNS,
    EMAIL_COLUMNS,
    conversation_to_row,
    email_to_row,
    row_to_conversation,
    row_to_email,
)
from mailsync.domain.models import AttachmentInfo, Conversation


def _fetch_row(conn: sqlite3.Connection, sql: str) -> sqlite3.Row:
    conn.row_factory = sqlite3.Row
    return conn.execute(sql).fetchone()


class TestSchema:
    """Table creation."""

    def test_creates_tables(self) -> None:
        conn = sqlite3.connect(":memory:")
        init_conversation_tables(conn)

        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}

        assert {"conversations", "emails", "store_meta"} <= tables
        conn.close()

    def test_is_idempotent(self) -> None:
        conn = sqlite3.connect(":memory:")
        init_conversation_tables(conn)
        init_conversation_tables(conn)
        conn.close()

    def test_store_meta_is_singleton(self, store_conn) -> None:
        store_conn.execute("INSERT INTO store_meta (id, user_address) VALUES (1, 'a@x.com')")

        try:
            store_conn.execute("INSERT INTO store_meta (id, user_address) VALUES (2, 'b@x.com')")
        except sqlite3.IntegrityError:
            pass
        else:
            raise AssertionError("second store_meta row was accepted")


class TestSerializers:
    """Rows written with the column tuples read back into equal models."""

    def test_email_columns_match_row_width(self, make_email) -> None:
        assert len(email_to_row(make_email(), "c1")) == len(EMAIL_COLUMNS)

    def test_email_survives_database(self, store_conn, make_email) -> None:
        conversation = Conversation(
            display_name="Alice",
            contact_key="alice@example.com",
            participants=["alice@example.com"],
            last_message_at=make_email().timestamp,
        )
        email = make_email(
            cc=["carol@example.com"],
            alias_ids=["m0"],
            rfc_message_id="abc@mail",
            covers_until=make_email(minutes=3).timestamp,
            attachments=[AttachmentInfo(attachment_id="a1", filename="cv.pdf", size=10)],
        )
        store_conn.execute(
            f"INSERT INTO conversations ({', '.join(CONVERSATION_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in CONVERSATION_COLUMNS)})",
            conversation_to_row(conversation),
        )
        store_conn.execute(
            f"INSERT INTO emails ({', '.join(EMAIL_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in EMAIL_COLUMNS)})",
            email_to_row(email, conversation.id),
        )

        restored_email = row_to_email(_fetch_row(store_conn, "SELECT * FROM emails"))
        restored = row_to_conversation(
            _fetch_row(store_conn, "SELECT * FROM conversations"), [restored_email]
        )

        assert restored_email == email
        assert restored.model_dump(exclude={"emails"}) == conversation.model_dump(exclude={"emails"})
