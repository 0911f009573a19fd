"""Prometheus metrics instrumentation for the EMV service.

Provides:
- ``setup_metrics(app)``: Attach prometheus-fastapi-instrumentator to a FastAPI app,
  exposing ``/metrics`` with HTTP request duration/count plus the business counters.
- ``CALCULATIONS``: Counter of engine calculations by outcome.
- ``BULK_ROWS``: Counter of processed bulk rows by status.
"""

from __future__ import annotations

from fastapi import FastAPI
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

CALCULATIONS: Counter = Counter(
    "emv_calculations_total",
    "EMV calculations evaluated, labelled by outcome",
    ["outcome"],
)

BULK_ROWS: Counter = Counter(
    "emv_bulk_rows_total",
    "Bulk upload rows processed, labelled by status",
    ["status"],
)


def setup_metrics(app: FastAPI) -> None:
    """Instrument *app* with Prometheus HTTP metrics and expose ``/metrics``.

    Args:
        app: The FastAPI application to instrument.
    """
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/health", "/ready", "/metrics"],
    ).instrument(app).expose(app, include_in_schema=False, should_gzip=True)
