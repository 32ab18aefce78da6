"""Authentication module for Google API credential management."""

from mailsync.auth.credentials import (
    DEFAULT_GMAIL_SCOPES,
    get_gmail_credentials,
    get_gmail_service,
)

__all__ = [
    "DEFAULT_GMAIL_SCOPES",
    "get_gmail_credentials",
    "get_gmail_service",
]
