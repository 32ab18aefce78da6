"""Gmail OAuth2 credentials for the sync service.

The service runs unattended, so it boots from a cached ``token.json`` and
only refreshes it.  The interactive consent flow is reserved for the
one-off setup run (``interactive=True``); without it an unusable token
surfaces as ``AuthRequired`` so the caller can ask the user to sign in.
"""

from __future__ import annotations

from pathlib import Path

import google.auth.transport.requests
import structlog
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow  # type: ignore[import-untyped]
from googleapiclient.discovery import Resource, build

from mailsync.domain.errors import AuthRequired

logger = structlog.get_logger()

# Reading and label changes (read state) plus sending
DEFAULT_GMAIL_SCOPES: list[str] = [
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/gmail.send",
]

DEFAULT_TOKEN_PATH: str = "token.json"
DEFAULT_CREDENTIALS_PATH: str = "credentials.json"


def _load_cached(token_path: Path, scopes: list[str]) -> Credentials | None:
    if not token_path.exists():
        return None
    creds = Credentials.from_authorized_user_file(str(token_path), scopes)  # type: ignore[no-untyped-call]
    # A token granted for narrower scopes (e.g. an old read-only consent) cannot mark mail read
    if not creds.has_scopes(scopes):
        logger.warning("gmail_token_scopes_insufficient", path=str(token_path))
        return None
    return creds


def get_gmail_credentials(
    token_path: str | Path = DEFAULT_TOKEN_PATH,
    credentials_path: str | Path = DEFAULT_CREDENTIALS_PATH,
    scopes: list[str] | None = None,
    interactive: bool = True,
) -> Credentials:
    """Load the mailbox owner's Gmail credentials, refreshing when expired.

    Args:
        token_path: Cached token written by an earlier consent.
        credentials_path: OAuth2 client-secrets file for the consent flow.
        scopes: Scopes the token must carry.  Defaults to
            ``DEFAULT_GMAIL_SCOPES`` (gmail.modify + gmail.send).
        interactive: Run ``InstalledAppFlow`` when no usable token exists.

    Returns:
        Valid credentials; a refreshed or newly granted token is written
        back to ``token_path``.

    Raises:
        AuthRequired: The token is missing, under-scoped, or revoked and
            *interactive* is off, or a refresh was rejected.
    """
    if scopes is None:
        scopes = DEFAULT_GMAIL_SCOPES

    token_path = Path(token_path)
    creds = _load_cached(token_path, scopes)

    if creds and creds.valid:
        return creds

    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(google.auth.transport.requests.Request())
        except RefreshError as exc:
            logger.warning("gmail_token_refresh_failed", error=str(exc))
            raise AuthRequired("Gmail token was revoked. Please sign in again.") from exc
    elif interactive:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), scopes)
        creds = flow.run_local_server(port=0)
    else:
        raise AuthRequired(f"No usable Gmail token at {token_path}. Please sign in again.")

    token_path.write_text(creds.to_json())
    logger.info("gmail_token_saved", path=str(token_path))
    return creds


def get_gmail_service(
    credentials: Credentials | None = None,
    token_path: str | Path = DEFAULT_TOKEN_PATH,
    credentials_path: str | Path = DEFAULT_CREDENTIALS_PATH,
    interactive: bool = True,
) -> Resource:
    """Build the Gmail API v1 client used by ``GmailClient``.

    When *credentials* is ``None`` they are loaded with
    ``get_gmail_credentials`` from the given paths.
    """
    if credentials is None:
        credentials = get_gmail_credentials(token_path, credentials_path, interactive=interactive)
    return build("gmail", "v1", credentials=credentials, cache_discovery=False)
