"""Gmail API client implementing the ``MailProvider`` interface.

Provides the ``GmailClient`` class that encapsulates the Gmail API
operations the sync engine needs: resolving the authenticated address,
fetching recent messages in ``format="full"``, and sending mail.  Transport
and API errors are translated into the domain error taxonomy so callers
never see ``googleapiclient`` exceptions.
"""

from __future__ import annotations

import base64
from email.message import EmailMessage
from typing import Any

import structlog
from google.auth.exceptions import RefreshError, TransportError
from googleapiclient.errors import HttpError

from mailsync.domain.errors import (
    AuthRequired,
    MailSyncError,
    NetworkFailure,
    ProviderQuotaExceeded,
)
from mailsync.email.models import OutboundEmail
from mailsync.email.ports import RawMessage
from mailsync.resilience.retry import resilient_api_call

logger = structlog.get_logger()

# Gmail rejects list requests above this page size
GMAIL_MAX_RESULTS = 500

_QUOTA_REASONS = ("ratelimitexceeded", "quotaexceeded")


def _retry_after(exc: HttpError, default: float) -> float:
    resp = exc.resp
    value = resp.get("retry-after") if isinstance(resp, dict) else None
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def translate_error(exc: Exception, quota_backoff: float = 60.0) -> MailSyncError:
    """Map a Google client or transport exception onto the domain taxonomy.

    - 401, and 403 other than rate limiting: ``AuthRequired``
    - 429, and 403 rate limiting: ``ProviderQuotaExceeded``
    - a failed token refresh: ``AuthRequired``
    - anything else: ``NetworkFailure``

    Args:
        exc: The exception raised by the API client.
        quota_backoff: Retry delay used when the response carries none.

    Returns:
        The domain error to raise in its place.
    """
    if isinstance(exc, MailSyncError):
        return exc
    if isinstance(exc, RefreshError):
        return AuthRequired()
    if isinstance(exc, HttpError):
        status = exc.resp.status
        body = exc.content.decode("utf-8", errors="replace").lower() if exc.content else ""
        is_rate_limit = any(reason in body for reason in _QUOTA_REASONS)
        if status == 429 or (status == 403 and is_rate_limit):
            return ProviderQuotaExceeded(retry_after=_retry_after(exc, quota_backoff))
        if status in (401, 403):
            return AuthRequired()
        return NetworkFailure(f"Gmail API error {status}: {exc.reason}")
    if isinstance(exc, TransportError | OSError):
        return NetworkFailure(f"Could not reach Gmail: {exc}")
    return NetworkFailure(f"Gmail request failed: {exc}")


class GmailClient:
    """Wrapper around the Gmail API service implementing ``MailProvider``.

    All methods operate through the provided Gmail API service resource
    (obtained via ``get_gmail_service``) and block; run them in a worker
    thread from async code.

    Args:
        service: An authenticated Gmail API v1 service resource.
        user_email: The account address, if already known.  Otherwise it is
            fetched from the profile on first use.
        quota_backoff: Seconds to wait after a rate limit without a
            ``Retry-After`` header.
    """

    def __init__(self, service: Any, user_email: str | None = None, quota_backoff: float = 60.0) -> None:
        self._service = service
        self._user_email = user_email.strip().lower() if user_email else None
        self._quota_backoff = quota_backoff

    def _execute(self, request: Any) -> dict[str, Any]:
        try:
            result: dict[str, Any] = request.execute()
        except (HttpError, RefreshError, TransportError, OSError) as exc:
            raise translate_error(exc, self._quota_backoff) from exc
        return result

    @resilient_api_call("gmail.profile")
    def current_user_address(self) -> str:
        """Return the authenticated account's address (cached after first call)."""
        if self._user_email is None:
            profile = self._execute(self._service.users().getProfile(userId="me"))
            address = profile.get("emailAddress", "")
            if not address:
                raise AuthRequired("Gmail profile did not include an email address")
            self._user_email = address.strip().lower()
            logger.info("gmail_profile_resolved", user=self._user_email)
        return self._user_email

    @resilient_api_call("gmail.list")
    def fetch_messages(self, max_count: int) -> list[RawMessage]:
        """Fetch up to *max_count* of the most recent messages in full format.

        Messages that fail to load individually are logged and skipped so
        one bad message does not sink the whole batch.  Authentication and
        quota failures abort the fetch.

        Args:
            max_count: Maximum number of messages to return.

        Returns:
            Gmail message resources, most recent first.
        """
        listing = self._execute(
            self._service.users()
            .messages()
            .list(userId="me", maxResults=min(max_count, GMAIL_MAX_RESULTS))
        )
        refs = listing.get("messages", [])

        messages: list[RawMessage] = []
        for ref in refs:
            try:
                messages.append(
                    self._execute(
                        self._service.users().messages().get(userId="me", id=ref["id"], format="full")
                    )
                )
            except (AuthRequired, ProviderQuotaExceeded):
                raise
            except NetworkFailure as exc:
                logger.warning("gmail_message_fetch_failed", message_id=ref.get("id"), error=exc.message)

        logger.debug("gmail_fetch_complete", listed=len(refs), fetched=len(messages))
        return messages

    # Not retried: a timeout after Gmail accepted the message would send it twice
    def send_message(self, outbound: OutboundEmail) -> dict[str, Any]:
        """Compose and send an email via the Gmail API.

        Constructs an RFC 2822 MIME message from the ``OutboundEmail``
        model, base64url-encodes it, and sends via ``users.messages.send``.
        When ``outbound.thread_id`` is set, the message is linked to an
        existing thread.  When ``outbound.in_reply_to`` is set, the
        corresponding threading headers are added.

        Args:
            outbound: The email to send.

        Returns:
            The Gmail API response dict (contains ``id``, ``threadId``,
            ``labelIds``).
        """
        message = EmailMessage()
        message.set_content(outbound.body)
        message["From"] = self.current_user_address()
        message["To"] = ", ".join(outbound.to)
        if outbound.cc:
            message["Cc"] = ", ".join(outbound.cc)
        if outbound.bcc:
            message["Bcc"] = ", ".join(outbound.bcc)
        message["Subject"] = outbound.subject or ""
        message["Message-ID"] = outbound.rfc_message_id

        if outbound.in_reply_to:
            message["In-Reply-To"] = outbound.in_reply_to
        if outbound.references:
            message["References"] = outbound.references

        encoded = base64.urlsafe_b64encode(message.as_bytes()).decode()
        payload: dict[str, Any] = {"raw": encoded}

        if outbound.thread_id:
            payload["threadId"] = outbound.thread_id

        result = self._execute(self._service.users().messages().send(userId="me", body=payload))
        logger.info("gmail_message_sent", provider_id=result.get("id"), recipients=len(outbound.recipients))
        return result
