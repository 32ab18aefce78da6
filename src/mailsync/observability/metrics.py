"""Prometheus metrics instrumentation for the mail sync service.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus custom sync metrics.
- ``SYNC_PASSES``: Counter of sync passes by outcome.
- ``EMAILS_MERGED``: Counter of fetched emails applied to the store.
- ``CONVERSATIONS``: Gauge tracking the number of stored conversations.

Sync metrics are updated when a pass settles (not by polling the database).
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter, Gauge
from prometheus_fastapi_instrumentator import Instrumentator

SYNC_PASSES: Counter = Counter(
    "mailsync_sync_passes_total",
    "Number of completed sync passes",
    ["outcome"],
)

EMAILS_MERGED: Counter = Counter(
    "mailsync_emails_merged_total",
    "Total number of fetched emails applied to the conversation store",
)

CONVERSATIONS: Gauge = Gauge(
    "mailsync_conversations",
    "Number of conversations in the local mirror",
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Excludes health/ready/metrics endpoints from instrumentation to avoid
    noise in dashboards.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
