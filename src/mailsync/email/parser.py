"""Gmail payload parsing and reply text extraction.

Provides helpers for:
- Walking a ``format="full"`` Gmail payload for text bodies and attachments
- Stripping HTML when a message has no plain-text part
- Extracting only the latest reply from a multi-message email body
"""

from __future__ import annotations

import base64
import html
import re
from typing import Any

from mailparser_reply import EmailReplyParser  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field

from mailsync.domain.models import AttachmentInfo

SNIPPET_LENGTH = 100

_TAG_RE = re.compile(r"<[^>]+>")
_BLOCK_RE = re.compile(r"<(script|style)\b.*?</\1>", re.IGNORECASE | re.DOTALL)
_WHITESPACE_RE = re.compile(r"\s+")


class ParsedPayload(BaseModel):
    """Text content and attachment metadata extracted from a Gmail payload."""

    model_config = ConfigDict(frozen=True)

    text_body: str = ""
    html_body: str | None = None
    attachments: list[AttachmentInfo] = Field(default_factory=list)


def _decode_part_data(data: str) -> str:
    # Gmail strips base64url padding
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def parse_payload(payload: dict[str, Any]) -> ParsedPayload:
    """Extract bodies and attachments from a Gmail message payload.

    Walks the MIME tree depth-first.  The first ``text/plain`` and first
    ``text/html`` parts become the bodies; any part carrying a filename is
    an attachment and only its metadata is kept.  If there is no
    ``text/plain`` part, the text body is the HTML with tags stripped.

    Args:
        payload: The ``payload`` object of a Gmail message.

    Returns:
        A ``ParsedPayload``.
    """
    text_plain = ""
    text_html = ""
    attachments: list[AttachmentInfo] = []

    stack = [payload]
    while stack:
        part = stack.pop(0)
        children = part.get("parts") or []
        if children:
            stack = list(children) + stack
            continue

        body = part.get("body") or {}
        filename = part.get("filename") or ""
        mime_type = part.get("mimeType", "")
        if filename:
            attachments.append(
                AttachmentInfo(
                    attachment_id=body.get("attachmentId", ""),
                    filename=filename,
                    mime_type=mime_type or "application/octet-stream",
                    size=int(body.get("size", 0)),
                )
            )
            continue

        data = body.get("data")
        if not data:
            continue
        if mime_type == "text/plain" and not text_plain:
            text_plain = _decode_part_data(data)
        elif mime_type == "text/html" and not text_html:
            text_html = _decode_part_data(data)

    return ParsedPayload(
        text_body=text_plain or strip_html(text_html),
        html_body=text_html or None,
        attachments=attachments,
    )


def strip_html(markup: str) -> str:
    """Reduce HTML to plain text: drop scripts, styles and tags, unescape entities."""
    if not markup:
        return ""
    text = _BLOCK_RE.sub("", markup)
    text = _TAG_RE.sub("", text)
    return html.unescape(text).strip()


def extract_latest_reply(full_body: str) -> str:
    """Extract only the latest reply text from an email body.

    Uses ``mail-parser-reply`` to strip quoted content, signature blocks,
    and forwarded message headers.  If the parser returns nothing (the
    whole message looked quoted), the original body is returned.
    """
    parsed: str = EmailReplyParser(languages=["en"]).parse_reply(text=full_body)
    if not parsed or not parsed.strip():
        return full_body
    return parsed


def make_snippet(body: str, fallback: str = "") -> str:
    """Build a short preview from *body*, or from *fallback* when it is blank.

    The preview is the latest reply with whitespace collapsed, truncated to
    ``SNIPPET_LENGTH`` characters.
    """
    text = extract_latest_reply(body) if body.strip() else ""
    text = _WHITESPACE_RE.sub(" ", text).strip()
    if not text:
        text = _WHITESPACE_RE.sub(" ", html.unescape(fallback)).strip()
    return text[:SNIPPET_LENGTH]
