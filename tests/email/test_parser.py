"""Tests for Gmail payload parsing and reply text extraction."""

from __future__ import annotations

import base64

from mailsync.email.parser import (
    SNIPPET_LENGTH,
    extract_latest_reply,
    make_snippet,
    parse_payload,
    strip_html,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _b64(text: str) -> str:
    """Encode like Gmail does: base64url without padding."""
    return base64.urlsafe_b64encode(text.encode()).decode().rstrip("=")


def _part(mime_type: str, text: str) -> dict:
    return {"mimeType": mime_type, "filename": "", "body": {"data": _b64(text)}}


# ---------------------------------------------------------------------------
# parse_payload tests
# ---------------------------------------------------------------------------


class TestParsePayload:
    """Tests for parse_payload."""

    def test_single_part_plain_text(self) -> None:
        payload = _part("text/plain", "Hello, are you free Friday?")

        result = parse_payload(payload)

        assert result.text_body == "Hello, are you free Friday?"
        assert result.html_body is None

    def test_prefers_text_plain_over_html(self) -> None:
        payload = {
            "mimeType": "multipart/alternative",
            "parts": [_part("text/html", "<p>HTML version</p>"), _part("text/plain", "Plain version")],
        }

        result = parse_payload(payload)

        assert result.text_body == "Plain version"
        assert result.html_body == "<p>HTML version</p>"

    def test_html_only_strips_tags(self) -> None:
        payload = {"mimeType": "multipart/alternative", "parts": [_part("text/html", "<p>Hello <b>world</b></p>")]}

        result = parse_payload(payload)

        assert result.text_body == "Hello world"

    def test_nested_multipart(self) -> None:
        payload = {
            "mimeType": "multipart/mixed",
            "parts": [
                {
                    "mimeType": "multipart/alternative",
                    "parts": [_part("text/plain", "Nested plain")],
                },
                {
                    "mimeType": "image/png",
                    "filename": "photo.png",
                    "body": {"attachmentId": "img-1", "size": 512},
                },
            ],
        }

        result = parse_payload(payload)

        assert result.text_body == "Nested plain"
        assert len(result.attachments) == 1
        assert result.attachments[0].mime_type == "image/png"

    def test_attachment_text_part_not_used_as_body(self) -> None:
        attachment = _part("text/plain", "attachment contents")
        attachment["filename"] = "notes.txt"
        payload = {"mimeType": "multipart/mixed", "parts": [_part("text/plain", "Body"), attachment]}

        result = parse_payload(payload)

        assert result.text_body == "Body"
        assert [a.filename for a in result.attachments] == ["notes.txt"]

    def test_unicode_content_handled(self) -> None:
        result = parse_payload(_part("text/plain", "Price: €500 at the café"))

        assert "€500" in result.text_body
        assert "café" in result.text_body

    def test_empty_payload(self) -> None:
        result = parse_payload({})

        assert result.text_body == ""
        assert result.attachments == []


class TestStripHtml:
    """Tests for strip_html."""

    def test_strips_nested_tags_and_entities(self) -> None:
        assert strip_html("<div><span>Fish &amp; chips</span></div>") == "Fish & chips"

    def test_drops_scripts_and_styles(self) -> None:
        markup = "<style>p {color: red}</style><p>Visible</p><script>alert(1)</script>"

        assert strip_html(markup) == "Visible"

    def test_empty(self) -> None:
        assert strip_html("") == ""


# ---------------------------------------------------------------------------
# extract_latest_reply tests
# ---------------------------------------------------------------------------


class TestExtractLatestReply:
    """Tests for extract_latest_reply."""

    def test_simple_text_no_quoted(self) -> None:
        result = extract_latest_reply("Sounds good, see you at noon.")
        assert "Sounds good" in result

    def test_strips_on_wrote_quoted_content(self) -> None:
        text = (
            "See you there.\n\n"
            "On Mon, Jan 1, 2024 at 10:00 AM Alice <alice@example.com> wrote:\n"
            "> Lunch at the usual place?\n"
            "> Let me know.\n"
        )
        result = extract_latest_reply(text)
        assert "See you there" in result
        assert "usual place" not in result

    def test_empty_extraction_returns_original(self) -> None:
        result = extract_latest_reply("> Just a quoted line")
        assert len(result) > 0


class TestMakeSnippet:
    """Tests for make_snippet."""

    def test_collapses_whitespace(self) -> None:
        assert make_snippet("Hello\n\n   there\tfriend") == "Hello there friend"

    def test_truncates(self) -> None:
        assert len(make_snippet("x" * 500)) == SNIPPET_LENGTH

    def test_blank_body_uses_fallback(self) -> None:
        assert make_snippet("   ", fallback="Provider &amp; snippet") == "Provider & snippet"
