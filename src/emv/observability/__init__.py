"""Observability: Prometheus metrics and request tracing."""

from emv.observability.metrics import BULK_ROWS, CALCULATIONS, setup_metrics
from emv.observability.middleware import RequestIdMiddleware

__all__ = [
    "BULK_ROWS",
    "CALCULATIONS",
    "RequestIdMiddleware",
    "setup_metrics",
]
