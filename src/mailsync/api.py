"""HTTP surface over the conversation store and sync orchestrator.

Routes read their collaborators from ``request.app.state.services`` (see
``mailsync.app.initialize_services``).  Domain errors are rendered as
``{"error": ErrorReport}`` with a status code derived from the error kind.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mailsync.conversations.store import ConversationStore
from mailsync.domain.errors import AuthRequired, MailSyncError, NotFoundError, to_error_report
from mailsync.domain.models import Conversation
from mailsync.domain.types import ErrorKind
from mailsync.email.models import OutboundEmail
from mailsync.email.threading import build_reply
from mailsync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()

router = APIRouter()

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.AUTH_REQUIRED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_TRANSITION: 409,
    ErrorKind.VALIDATION_FAILURE: 422,
    ErrorKind.PROVIDER_QUOTA_EXCEEDED: 429,
    ErrorKind.STORAGE_FAILURE: 500,
    ErrorKind.NETWORK_FAILURE: 503,
    ErrorKind.UNKNOWN: 500,
}


class ConversationSummary(BaseModel):
    """A conversation without its emails, for list views."""

    id: str
    display_name: str
    contact_key: str
    participants: list[str]
    is_group: bool
    last_message_at: datetime
    last_message_snippet: str
    is_read: bool
    unread_count: int

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> ConversationSummary:
        return cls(
            id=conversation.id,
            display_name=conversation.display_name,
            contact_key=conversation.contact_key,
            participants=conversation.participants,
            is_group=conversation.is_group,
            last_message_at=conversation.last_message_at,
            last_message_snippet=conversation.last_message_snippet,
            is_read=conversation.is_read,
            unread_count=conversation.unread_count,
        )


class SendRequest(BaseModel):
    """Body of ``POST /messages``."""

    to: list[str]
    cc: list[str] = Field(default_factory=list)
    bcc: list[str] = Field(default_factory=list)
    subject: str | None = None
    body: str = ""
    thread_id: str | None = None
    in_reply_to: str | None = None
    references: str | None = None


class ReplyRequest(BaseModel):
    """Body of ``POST /conversations/{id}/reply``."""

    body: str
    reply_all: bool = False
    email_id: str | None = None


def _store(request: Request) -> ConversationStore:
    store: ConversationStore = request.app.state.services["store"]
    return store


def _orchestrator(request: Request) -> SyncOrchestrator:
    orchestrator: SyncOrchestrator | None = request.app.state.services.get("orchestrator")
    if orchestrator is None:
        raise AuthRequired("Mail provider is not connected. Please sign in.")
    return orchestrator


def _conversation_or_404(store: ConversationStore, conversation_id: str) -> Conversation:
    conversation = store.get(conversation_id)
    if conversation is None:
        raise NotFoundError(f"Conversation not found: {conversation_id}")
    return conversation


def _conversation_detail(conversation: Conversation) -> dict[str, Any]:
    detail = conversation.model_dump(mode="json", exclude={"emails"})
    detail["unread_count"] = conversation.unread_count
    detail["emails"] = [e.model_dump(mode="json") for e in conversation.sorted_emails]
    return detail


@router.get("/conversations")
async def list_conversations(request: Request) -> list[ConversationSummary]:
    """All conversations, most recent first."""
    return [ConversationSummary.from_conversation(c) for c in _store(request).list_conversations()]


@router.get("/search")
async def search_conversations(request: Request, q: str = "") -> list[ConversationSummary]:
    """Conversations matching *q* by name, address, or message content."""
    return [ConversationSummary.from_conversation(c) for c in _store(request).search(q)]


@router.get("/conversations/{conversation_id}")
async def get_conversation(request: Request, conversation_id: str) -> dict[str, Any]:
    """One conversation with its emails in chronological order."""
    return _conversation_detail(_conversation_or_404(_store(request), conversation_id))


@router.post("/conversations/{conversation_id}/read")
async def mark_read(request: Request, conversation_id: str) -> ConversationSummary:
    return ConversationSummary.from_conversation(_store(request).mark_read(conversation_id))


@router.post("/conversations/{conversation_id}/unread")
async def mark_unread(request: Request, conversation_id: str) -> ConversationSummary:
    return ConversationSummary.from_conversation(_store(request).mark_unread(conversation_id))


@router.delete("/conversations/{conversation_id}")
async def delete_conversation(request: Request, conversation_id: str) -> dict[str, str]:
    _store(request).delete(conversation_id)
    return {"status": "deleted"}


@router.delete("/emails/{email_id}")
async def remove_email(request: Request, email_id: str) -> dict[str, Any]:
    """Remove one email; its conversation is deleted if it becomes empty."""
    conversation = _store(request).remove(email_id)
    return {
        "status": "removed",
        "conversation_id": conversation.id if conversation is not None else None,
    }


@router.post("/sync")
async def sync(request: Request, silent: bool = False) -> JSONResponse:
    """Run a sync pass now; 202 if one was already in flight."""
    result = await _orchestrator(request).sync_now(silent=silent)
    if result is None:
        return JSONResponse(content={"status": "skipped"}, status_code=202)
    return JSONResponse(content={"status": "ok", "result": result.model_dump(mode="json")})


@router.get("/sync/status")
async def sync_status(request: Request) -> dict[str, Any]:
    return _orchestrator(request).status().model_dump(mode="json")


@router.post("/messages")
async def send_message(request: Request, payload: SendRequest) -> dict[str, Any]:
    """Send a new message and return its local copy."""
    outbound = OutboundEmail(**payload.model_dump())
    email = await _orchestrator(request).send_message(outbound)
    return email.model_dump(mode="json")


@router.post("/conversations/{conversation_id}/reply")
async def reply(request: Request, conversation_id: str, payload: ReplyRequest) -> dict[str, Any]:
    """Reply (or reply-all) to an email in a conversation, the latest by default."""
    orchestrator = _orchestrator(request)
    conversation = _conversation_or_404(_store(request), conversation_id)
    target = (
        conversation.find_email(payload.email_id) if payload.email_id else conversation.latest_email
    )
    if target is None:
        raise NotFoundError(f"Email not found: {payload.email_id}")
    user = orchestrator.user_address or ""
    outbound = build_reply(target, user, payload.body, reply_all=payload.reply_all)
    email = await orchestrator.send_message(outbound)
    return email.model_dump(mode="json")


def register_error_handlers(app: FastAPI) -> None:
    """Render ``MailSyncError`` as ``{"error": ErrorReport}``.

    Args:
        app: The FastAPI application instance.
    """

    @app.exception_handler(MailSyncError)
    async def mail_sync_error(request: Request, exc: MailSyncError) -> JSONResponse:
        report = to_error_report(exc)
        status_code = STATUS_BY_KIND.get(report.kind, 500)
        logger.info(
            "request_failed",
            path=request.url.path,
            kind=report.kind.value,
            status_code=status_code,
        )
        return JSONResponse(
            content={"error": report.model_dump(mode="json")},
            status_code=status_code,
        )
