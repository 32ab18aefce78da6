"""Centralized, typed configuration using pydantic-settings.

Provides a single ``Settings`` class backed by ``.env`` file and environment
variables, a cached ``get_settings()`` accessor, and a ``validate_credentials()``
startup gate that enforces credential presence in production mode.

IMPORTANT: This module has ZERO imports from the ``mailsync`` package to
prevent circular imports.  Only stdlib, pydantic, pydantic_settings, and
structlog are used.
"""

from __future__ import annotations

import sys
from datetime import timedelta
from functools import lru_cache
from pathlib import Path

import structlog
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Application settings loaded from environment variables and ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- General ---------------------------------------------------------------
    production: bool = False
    api_port: int = 8000
    user_email: str = ""

    # -- Store -----------------------------------------------------------------
    store_db_path: Path = Path("data/mailsync.db")

    # -- Gmail -----------------------------------------------------------------
    gmail_token_path: Path = Path("token.json")
    gmail_credentials_path: Path = Path("credentials.json")

    # -- Sync ------------------------------------------------------------------
    sync_interval_seconds: float = Field(default=10.0, gt=0)
    fetch_max_count: int = Field(default=100, ge=1, le=500)
    dedup_window_seconds: float = Field(default=300.0, ge=0)
    quota_backoff_seconds: float = Field(default=60.0, ge=0)
    post_send_sync_delay_seconds: float = Field(default=2.0, ge=0)

    @property
    def dedup_window(self) -> timedelta:
        """The heuristic duplicate window as a ``timedelta``."""
        return timedelta(seconds=self.dedup_window_seconds)


@lru_cache
def get_settings() -> Settings:
    """Return a cached ``Settings`` instance.

    The ``@lru_cache`` decorator ensures environment variables are parsed
    exactly once.  Call ``get_settings.cache_clear()`` in tests to reset.

    Returns:
        The application ``Settings``.
    """
    try:
        return Settings()
    except ValidationError as exc:
        logger.error("settings_validation_failed", errors=exc.errors())
        sys.exit(1)


def validate_credentials(settings: Settings) -> None:
    """Enforce credential presence at startup.

    In **production** mode (``settings.production is True``), the application
    exits with a clear error block if any required credential is missing.

    In **development** mode, each missing credential is logged as a warning
    but the application continues to start.

    Args:
        settings: The loaded application settings.
    """
    errors: list[str] = []

    if not settings.gmail_token_path.exists():
        errors.append(f"Gmail token file not found: {settings.gmail_token_path}")

    if not errors:
        logger.info("credential_validation_passed")
        return

    if settings.production:
        for err in errors:
            logger.error("credential_missing", detail=err)
        print("\n=== STARTUP FAILED ===", file=sys.stderr)
        print("Missing required credentials for production mode:", file=sys.stderr)
        for err in errors:
            print(f"  - {err}", file=sys.stderr)
        print("======================\n", file=sys.stderr)
        sys.exit(1)
    else:
        for err in errors:
            logger.warning("credential_missing_dev", detail=err)
