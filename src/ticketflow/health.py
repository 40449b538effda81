"""Health and readiness endpoints for container orchestration.

Provides two top-level routes:

- ``GET /health`` -- Liveness probe.  Returns 200 if the process is alive.
- ``GET /ready``  -- Readiness probe.  Returns 200 only when the Slack
  messenger is initialized **and** the workflow engine, escalation router and
  thread store have started their background sweeps.  Returns 503 with
  per-check details otherwise.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

CORE_SERVICES = ("workflow_engine", "escalation_router", "thread_store")


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
        """Readiness probe -- checks the messenger and the core services."""
        services: dict[str, Any] = request.app.state.services
        checks: dict[str, str] = {}

        checks["slack"] = "ok" if services.get("messenger") is not None else "fail"

        started = services.get("background_started", False)
        for name in CORE_SERVICES:
            checks[name] = "ok" if services.get(name) is not None and started else "fail"

        all_ok = all(v == "ok" for v in checks.values())
        status = "ready" if all_ok else "not_ready"
        code = 200 if all_ok else 503

        return JSONResponse(content={"status": status, "checks": checks}, status_code=code)
