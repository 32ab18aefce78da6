"""Health and readiness endpoints for container orchestration.

Provides two top-level routes:

- ``GET /health`` -- Liveness probe.  Returns 200 if the process is alive.
- ``GET /ready``  -- Readiness probe.  Returns 200 only when the store DB
  connection is functional **and** the sync orchestrator is configured.
  Returns 503 with per-check details otherwise.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


def register_health_routes(app: FastAPI) -> None:
    """Register ``/health`` and ``/ready`` endpoints on *app*.

    Args:
        app: The FastAPI application instance.
    """

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness probe -- always returns 200 if the process is running."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(request: Request) -> JSONResponse:
        """Readiness probe -- checks the store DB and sync orchestrator."""
        services: dict[str, Any] = request.app.state.services
        checks: dict[str, str] = {}

        # Check 1: store DB connection
        store_conn = services.get("store_conn")
        if store_conn is not None:
            try:
                await asyncio.to_thread(store_conn.execute, "SELECT 1")
                checks["store_db"] = "ok"
            except Exception:
                checks["store_db"] = "fail"
        else:
            checks["store_db"] = "fail"

        # Check 2: orchestrator wired to a provider
        orchestrator = services.get("orchestrator")
        checks["sync"] = "ok" if orchestrator is not None else "fail"

        all_ok = all(v == "ok" for v in checks.values())
        status = "ready" if all_ok else "not_ready"
        code = 200 if all_ok else 503

        content: dict[str, Any] = {"status": status, "checks": checks}
        if orchestrator is not None:
            content["sync_state"] = orchestrator.state.value
        return JSONResponse(content=content, status_code=code)
