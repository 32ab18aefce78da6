"""Application entry point serving the mail sync engine over FastAPI.

Configures:
- **structlog** with JSON rendering (production) or colored console (development)
- **Conversation store** on SQLite with WAL mode
- **Gmail client** and **sync orchestrator** (when a Gmail token is available)
- **Health**, **readiness** and **Prometheus** endpoints
- Auto-sync started on application startup and torn down on shutdown
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from mailsync.api import register_error_handlers, router
from mailsync.config import Settings, get_settings, validate_credentials
from mailsync.conversations.schema import close_store_db, init_store_db
from mailsync.conversations.store import ConversationStore
from mailsync.domain.errors import ErrorReport, MailSyncError
from mailsync.events import ChangeNotifier
from mailsync.health import register_health_routes
from mailsync.observability.metrics import CONVERSATIONS, setup_metrics
from mailsync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()


def configure_logging(production: bool = False) -> None:
    """Configure structlog for production (JSON) or development (console).

    Production mode (*production=True*): JSON rendering at INFO level.
    Development mode: colored console rendering at DEBUG level.

    Args:
        production: Enable production mode if ``True``.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
        log_level = logging.INFO
    else:
        renderer = structlog.dev.ConsoleRenderer()
        log_level = logging.DEBUG

    structlog.configure(
        processors=[*shared_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service="mailsync")


def _log_auth_required(report: ErrorReport) -> None:
    logger.warning("gmail_sign_in_required", message=report.message)


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Set up all shared services for the application.

    Creates the store database and ``ConversationStore``, then the
    ``GmailClient`` and ``SyncOrchestrator`` if a Gmail token is available.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.

    Returns:
        A dict of initialized service instances keyed by name.
    """
    if settings is None:
        settings = get_settings()

    services: dict[str, Any] = {"_settings": settings}

    # a. SQLite store
    db_path = settings.store_db_path
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    store_conn = init_store_db(db_path)
    services["store_conn"] = store_conn

    notifier = ChangeNotifier()
    store = ConversationStore(store_conn, notifier=notifier, dedup_window=settings.dedup_window)
    services["notifier"] = notifier
    services["store"] = store
    CONVERSATIONS.set(len(store.list_conversations()))

    # b. GmailClient (if gmail token file exists)
    gmail_client = None
    if settings.gmail_token_path.exists():
        try:
            from mailsync.auth.credentials import get_gmail_service
            from mailsync.email.client import GmailClient

            service = get_gmail_service(
                token_path=settings.gmail_token_path,
                credentials_path=settings.gmail_credentials_path,
                interactive=False,
            )
            gmail_client = GmailClient(
                service,
                user_email=settings.user_email or None,
                quota_backoff=settings.quota_backoff_seconds,
            )
            logger.info("gmail_client_initialized")
        except Exception:
            logger.warning("gmail_client_init_failed", exc_info=True)
    else:
        logger.info("gmail_token_missing", path=str(settings.gmail_token_path))
    services["gmail_client"] = gmail_client

    # c. Sync orchestrator (needs a provider)
    orchestrator = None
    if gmail_client is not None:
        orchestrator = SyncOrchestrator(
            store,
            gmail_client,
            interval=settings.sync_interval_seconds,
            max_count=settings.fetch_max_count,
            quota_backoff=settings.quota_backoff_seconds,
            post_send_delay=settings.post_send_sync_delay_seconds,
            on_auth_required=_log_auth_required,
        )
    services["orchestrator"] = orchestrator

    return services


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Lifespan context manager for FastAPI startup and shutdown.

    On startup: starts auto-sync if an orchestrator is configured.
    On shutdown: stops syncing (keeping the local mirror) and closes the
    store database connection.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application.
    """
    services = app.state.services
    orchestrator: SyncOrchestrator | None = services.get("orchestrator")
    if orchestrator is not None:
        try:
            await orchestrator.start_auto_sync()
        except MailSyncError as exc:
            logger.warning("auto_sync_start_failed", kind=exc.kind.value, error=exc.message)
    logger.info("application_started")
    yield
    if orchestrator is not None:
        await orchestrator.teardown(purge=False)
    store_conn = services.get("store_conn")
    if store_conn is not None:
        close_store_db(store_conn)
        logger.info("store_db_closed")


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app with lifespan, API routes, health and metrics.

    Args:
        services: The initialized services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    fastapi_app = FastAPI(title="Mail Sync", lifespan=lifespan)
    fastapi_app.state.services = services
    fastapi_app.state.settings = services.get("_settings", get_settings())
    fastapi_app.include_router(router)
    register_error_handlers(fastapi_app)
    register_health_routes(fastapi_app)
    setup_metrics(fastapi_app)
    return fastapi_app


async def main() -> None:
    """Main entry point.

    1. Configure logging
    2. Validate credentials
    3. Initialize services
    4. Serve the FastAPI app with uvicorn
    """
    settings = get_settings()
    configure_logging(production=settings.production)
    logger.info("application_starting")

    validate_credentials(settings)

    services = initialize_services(settings)
    fastapi_app = create_app(services)

    config = uvicorn.Config(
        fastapi_app,
        host="0.0.0.0",
        port=settings.api_port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
