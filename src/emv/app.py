"""Application wiring for the EMV service.

Builds the shared services (database, rate-table registry, calculation
engine, stores), configures logging, and assembles the FastAPI app:

- **structlog** with JSON rendering (production) or colored console (development)
- **Rate table** from the defaults or an optional YAML override, with stored
  edits and custom topics applied on startup
- **Prometheus** ``/metrics`` plus health/readiness probes
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, TextIO

import structlog
import uvicorn
from fastapi import FastAPI

from emv.api import router as api_router
from emv.config import Settings, get_settings
from emv.health import register_health_routes
from emv.observability.metrics import setup_metrics
from emv.observability.middleware import RequestIdMiddleware
from emv.pricing.engine import EMVCalculator
from emv.pricing.rate_table import DEFAULT_RATE_TABLE, load_rate_table
from emv.pricing.registry import RateTableRegistry
from emv.storage.store import (
    CalculationStore,
    CustomTopicStore,
    RateTableStore,
    close_emv_db,
    init_emv_db,
)

logger = structlog.get_logger()


def configure_logging(production: bool = False, stream: TextIO | None = None) -> None:
    """Configure structlog for production (JSON) or development (console).

    Args:
        production: Render JSON at INFO level when ``True``; otherwise render
            colored console output at DEBUG level.
        stream: Where log lines are written; stdout when ``None``.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
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
        logger_factory=structlog.PrintLoggerFactory(stream),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(service="emv-engine")


def build_registry(settings: Settings) -> RateTableRegistry:
    """Create the rate-table registry from the configured override, if any.

    Raises:
        FileNotFoundError: If ``rate_table_path`` is set but missing.
        ConfigurationError: If the override produces an invalid table.
    """
    if settings.rate_table_path is None:
        return RateTableRegistry(DEFAULT_RATE_TABLE)
    return RateTableRegistry(load_rate_table(settings.rate_table_path))


def restore_stored_settings(conn: sqlite3.Connection, registry: RateTableRegistry) -> None:
    """Apply stored rate-table edits, then register the stored custom topics."""
    RateTableStore(conn).load_into(registry)
    CustomTopicStore(conn).load_into(registry)


def initialize_services(settings: Settings | None = None) -> dict[str, Any]:
    """Open the database and build the shared services.

    Stored rate-table edits and custom topics are applied to the rate table
    before the services are returned.

    Args:
        settings: Settings to use; defaults to ``get_settings()``.

    Returns:
        A dict with ``settings``, ``db_conn``, ``registry``, ``calculator``,
        ``calculation_store``, ``topic_store`` and ``rate_table_store``
        entries.
    """
    settings = settings or get_settings()

    db_path = settings.database_path
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = init_emv_db(db_path)

    registry = build_registry(settings)
    restore_stored_settings(conn, registry)

    logger.info(
        "Services initialized",
        database=str(db_path),
        rate_table=str(settings.rate_table_path or "default"),
    )
    return {
        "settings": settings,
        "db_conn": conn,
        "registry": registry,
        "calculator": EMVCalculator(registry),
        "calculation_store": CalculationStore(conn),
        "topic_store": CustomTopicStore(conn),
        "rate_table_store": RateTableStore(conn),
    }


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Close the database connection on shutdown."""
    logger.info("FastAPI application starting")
    yield
    conn = app.state.services.get("db_conn")
    if conn is not None:
        close_emv_db(conn)
        logger.info("Database connection closed")


def create_app(services: dict[str, Any]) -> FastAPI:
    """Create the FastAPI app serving the EMV routes.

    Args:
        services: The services dict from ``initialize_services``.

    Returns:
        The configured FastAPI application.
    """
    app = FastAPI(title="EMV Engine", lifespan=lifespan)
    app.state.services = services
    app.state.settings = services.get("settings") or get_settings()
    app.add_middleware(RequestIdMiddleware)
    app.include_router(api_router)
    register_health_routes(app)
    setup_metrics(app)
    return app


def main() -> None:
    """Configure logging, build services, and serve the API with uvicorn."""
    settings = get_settings()
    configure_logging(production=settings.production)
    services = initialize_services(settings)
    uvicorn.run(create_app(services), host="0.0.0.0", port=settings.api_port)


if __name__ == "__main__":
    main()
