"""ASGI middleware that traces and times every HTTP request.

Each request gets an ID (the client's ``X-Request-ID`` or a new UUID4). The
ID, method and path are bound into structlog contextvars for the duration of
the request, the ID and elapsed time are returned as ``X-Request-ID`` and
``X-Process-Time`` response headers, and one ``request_completed`` entry is
logged per request with its status and duration.
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = structlog.get_logger()

# Responses at or above this status are logged as warnings.
SERVER_ERROR_STATUS = 500


class RequestIdMiddleware:
    """Bind request context for logging and report how each request went.

    Args:
        app: The wrapped ASGI application.
        service: Value of the ``service`` field bound into every log entry.
    """

    def __init__(self, app: ASGIApp, service: str = "emv-engine") -> None:
        self.app = app
        self.service = service

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = Headers(scope=scope).get("x-request-id") or str(uuid.uuid4())
        method = scope["method"]
        path = scope["path"]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id, method=method, path=path, service=self.service
        )

        start = time.perf_counter()
        status_code = SERVER_ERROR_STATUS

        async def send_with_headers(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
                headers = MutableHeaders(scope=message)
                headers["X-Request-ID"] = request_id
                headers["X-Process-Time"] = f"{_elapsed_ms(start)}ms"
            await send(message)

        try:
            await self.app(scope, receive, send_with_headers)
        except Exception:
            logger.exception("request_failed", duration_ms=_elapsed_ms(start))
            raise

        log = logger.warning if status_code >= SERVER_ERROR_STATUS else logger.info
        log("request_completed", status=status_code, duration_ms=_elapsed_ms(start))


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)
