"""Health and readiness endpoints.

- ``GET /health`` -- Liveness probe.  Returns 200 if the process is alive.
- ``GET /ready``  -- Readiness probe.  Returns 200 only when the database
  answers a trivial query and the active rate table has every rate a
  calculation can look up; 503 otherwise.
"""

from __future__ import annotations

import asyncio
import sqlite3
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from emv.domain.errors import RateLookupError
from emv.domain.types import ENGAGEMENT_FIELDS, CreatorSize
from emv.pricing.registry import RateTableRegistry

logger = structlog.get_logger()


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
        """Readiness probe -- checks the database and rate table."""
        services: dict[str, Any] = request.app.state.services
        checks: dict[str, str] = {}

        conn = services.get("db_conn")
        if conn is not None:
            try:
                await asyncio.to_thread(conn.execute, "SELECT 1")
                checks["database"] = "ok"
            except sqlite3.Error:
                checks["database"] = "fail"
        else:
            checks["database"] = "fail"

        checks["rate_table"] = "ok" if _rate_table_ready(services.get("registry")) else "fail"

        all_ok = all(v == "ok" for v in checks.values())
        status = "ready" if all_ok else "not_ready"
        code = 200 if all_ok else 503

        return JSONResponse(content={"status": status, "checks": checks}, status_code=code)


def _rate_table_ready(registry: RateTableRegistry | None) -> bool:
    """Whether every rate a calculation can look up is present in the active table."""
    if registry is None:
        return False
    table = registry.current()
    try:
        for size in CreatorSize:
            table.creator_factor(size)
        for platform, post_types in ENGAGEMENT_FIELDS.items():
            for post_type, metrics in post_types.items():
                table.post_type_factor(platform, post_type)
                for metric in metrics:
                    table.base_rate(platform, post_type, metric)
    except RateLookupError as exc:
        logger.warning("rate_table_not_ready", table=exc.table, key=exc.key)
        return False
    return True
