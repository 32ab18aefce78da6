"""Tests for Prometheus metrics endpoint and custom sync metrics."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mailsync.observability.metrics import (
    CONVERSATIONS,
    EMAILS_MERGED,
    SYNC_PASSES,
    setup_metrics,
)


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Reset custom metric values between tests.

    Prometheus collectors are registered globally, so we reset values rather
    than re-creating them.
    """
    CONVERSATIONS.set(0)
    # Counters cannot be reset, so tests track relative increments
    yield


@pytest.fixture()
def metrics_app() -> FastAPI:
    """Create a minimal FastAPI app with Prometheus instrumentation."""
    app = FastAPI()

    @app.get("/hello")
    async def hello():
        return {"msg": "hello"}

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready():
        return {"status": "ready"}

    setup_metrics(app)
    return app


@pytest.fixture()
def metrics_client(metrics_app: FastAPI) -> TestClient:
    """TestClient for the metrics-enabled app."""
    return TestClient(metrics_app)


def test_metrics_endpoint_returns_prometheus_format(metrics_client: TestClient) -> None:
    """GET /metrics returns 200 with Prometheus-format text containing sync metrics."""
    metrics_client.get("/hello")
    resp = metrics_client.get("/metrics")
    assert resp.status_code == 200
    body = resp.text
    assert "http_request" in body
    assert "mailsync_sync_passes_total" in body
    assert "mailsync_emails_merged_total" in body
    assert "mailsync_conversations" in body


def test_excluded_handlers_not_in_metrics(metrics_client: TestClient) -> None:
    """/health and /ready do NOT appear as handler labels."""
    metrics_client.get("/health")
    metrics_client.get("/ready")
    body = metrics_client.get("/metrics").text
    lines = [
        line
        for line in body.splitlines()
        if "http_request_duration" in line and 'handler="' in line
    ]
    for line in lines:
        assert '/health"' not in line, f"/health found in metrics: {line}"
        assert '/ready"' not in line, f"/ready found in metrics: {line}"


def test_conversations_gauge_changes(metrics_client: TestClient) -> None:
    """CONVERSATIONS gauge is reflected in /metrics output."""
    CONVERSATIONS.set(5)
    assert "mailsync_conversations 5.0" in metrics_client.get("/metrics").text

    CONVERSATIONS.set(3)
    assert "mailsync_conversations 3.0" in metrics_client.get("/metrics").text


def test_emails_merged_counter_increments(metrics_client: TestClient) -> None:
    """EMAILS_MERGED counter increments are reflected in /metrics output."""
    initial_value = _extract_value(metrics_client.get("/metrics").text, "mailsync_emails_merged_total")

    EMAILS_MERGED.inc(4)

    new_value = _extract_value(metrics_client.get("/metrics").text, "mailsync_emails_merged_total")
    assert new_value == initial_value + 4.0


def test_sync_passes_labelled_by_outcome(metrics_client: TestClient) -> None:
    SYNC_PASSES.labels(outcome="fetch_failed").inc()

    body = metrics_client.get("/metrics").text

    assert 'mailsync_sync_passes_total{outcome="fetch_failed"}' in body


def _extract_value(text: str, metric_name: str) -> float:
    """Extract the numeric value of an unlabelled metric from Prometheus text output."""
    for line in text.splitlines():
        if line.startswith(metric_name) and not line.startswith(metric_name + "_"):
            parts = line.split()
            if len(parts) == 2:
                return float(parts[1])
    raise ValueError(f"Metric {metric_name} not found in output")
