"""Shared pytest fixtures for the mail sync test suite."""

from __future__ import annotations

import base64
import sqlite3
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from mailsync.conversations.schema import init_store_db
from mailsync.conversations.store import ConversationStore
from mailsync.domain.models import Email
from mailsync.events import ChangeEvent, ChangeNotifier

USER = "me@example.com"
BASE_TIME = datetime(2024, 3, 1, 12, 0, tzinfo=UTC)

EmailFactory = Callable[..., Email]
RawFactory = Callable[..., dict[str, Any]]


@pytest.fixture
def anyio_backend() -> str:
    """Run ``@pytest.mark.anyio`` tests on asyncio; the code uses asyncio directly."""
    return "asyncio"


@pytest.fixture
def user_address() -> str:
    """The authenticated account used throughout the tests."""
    return USER


@pytest.fixture
def make_email() -> EmailFactory:
    """Factory for normalized emails.

    ``minutes`` offsets the timestamp from a fixed base time so ordering is
    explicit in each test.
    """

    def _make(
        sender: str = "alice@example.com",
        to: list[str] | None = None,
        cc: list[str] | None = None,
        minutes: float = 0,
        provider_id: str | None = "m1",
        snippet: str = "Hello",
        is_read: bool = False,
        **overrides: Any,
    ) -> Email:
        return Email(
            provider_id=provider_id,
            sender=sender,
            to=to if to is not None else [USER],
            cc=cc or [],
            snippet=snippet,
            body=snippet,
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            is_read=is_read,
            **overrides,
        )

    return _make


@pytest.fixture
def make_raw_message() -> RawFactory:
    """Factory for Gmail ``format="full"`` message resources."""

    def _make(
        message_id: str = "gm-1",
        sender: str = "Alice Smith <alice@example.com>",
        to: str = USER,
        cc: str = "",
        subject: str = "Lunch?",
        body: str = "Are we still on for lunch?",
        labels: list[str] | None = None,
        internal_date_ms: int = int(BASE_TIME.timestamp() * 1000),
        rfc_message_id: str = "<abc123@mail.example.com>",
        extra_headers: list[dict[str, str]] | None = None,
        parts: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        headers = [
            {"name": "From", "value": sender},
            {"name": "To", "value": to},
            {"name": "Subject", "value": subject},
            {"name": "Message-ID", "value": rfc_message_id},
        ]
        if cc:
            headers.append({"name": "Cc", "value": cc})
        headers.extend(extra_headers or [])

        if parts is None:
            parts = [
                {
                    "mimeType": "text/plain",
                    "filename": "",
                    "body": {"data": base64.urlsafe_b64encode(body.encode()).decode().rstrip("=")},
                }
            ]
        return {
            "id": message_id,
            "threadId": f"thread-{message_id}",
            "labelIds": labels if labels is not None else ["INBOX", "UNREAD"],
            "snippet": body[:100],
            "internalDate": str(internal_date_ms),
            "payload": {"mimeType": "multipart/alternative", "headers": headers, "parts": parts},
        }

    return _make


@pytest.fixture
def store_conn() -> Iterator[sqlite3.Connection]:
    """In-memory store database with all tables created."""
    conn = init_store_db(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def notifier() -> ChangeNotifier:
    return ChangeNotifier()


@pytest.fixture
def events(notifier: ChangeNotifier) -> list[ChangeEvent]:
    """Every event emitted through ``notifier``, in order."""
    received: list[ChangeEvent] = []
    notifier.subscribe(received.append)
    return received


@pytest.fixture
def store(store_conn: sqlite3.Connection, notifier: ChangeNotifier) -> ConversationStore:
    return ConversationStore(store_conn, notifier=notifier)
