"""Email domain: Gmail API client, normalization, parsing, threading, and models."""

from mailsync.email.client import GmailClient, translate_error
from mailsync.email.models import OutboundEmail, is_valid_address, validate_outbound
from mailsync.email.normalizer import NormalizationError, email_from_outbound, normalize_message
from mailsync.email.parser import extract_latest_reply, make_snippet, parse_payload, strip_html
from mailsync.email.ports import ContactResolver, MailProvider, RawMessage, StaticContactResolver
from mailsync.email.threading import build_reply, reply_all_recipients, reply_recipients

__all__ = [
    "ContactResolver",
    "GmailClient",
    "MailProvider",
    "NormalizationError",
    "OutboundEmail",
    "RawMessage",
    "StaticContactResolver",
    "build_reply",
    "email_from_outbound",
    "extract_latest_reply",
    "is_valid_address",
    "make_snippet",
    "normalize_message",
    "parse_payload",
    "reply_all_recipients",
    "reply_recipients",
    "strip_html",
    "translate_error",
    "validate_outbound",
]
