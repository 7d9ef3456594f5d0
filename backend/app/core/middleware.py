"""
Request middleware — correlation IDs, timing and per-resource log context.

Every HTTP request gets an X-Request-ID (propagated from the client when
present) and an X-Process-Time header. Requests that address one disaster,
one alert configuration or one simulated sensor family carry that id or
type in the log context, so the matching-engine lines emitted while
serving them can be grepped together with the access line.

    /api/disasters/{id}[/readings]     → disaster_id
    /api/alerts/trigger/{id}           → disaster_id
    /api/alerts/{id}                   → alert_config_id
    /api/simulate/{earthquake|flood|fire}  → disaster_type
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from typing import Dict

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_request_context

logger = logging.getLogger(__name__)

# Docs and liveness probes are logged at DEBUG only
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")

_RESOURCE_PATTERNS = (
    (re.compile(r"^/api/alerts/trigger/(?P<id>[^/]+)$"), "disaster_id"),
    (re.compile(r"^/api/disasters/(?P<id>(?!nearby$)[^/]+)(?:/readings)?$"), "disaster_id"),
    (re.compile(r"^/api/alerts/(?P<id>[^/]+)$"), "alert_config_id"),
)
_SIMULATE_PATTERN = re.compile(r"^/api/simulate/(?P<type>earthquake|flood|fire)$", re.I)


def resource_context(path: str) -> Dict[str, str]:
    """Log-context fields identified by the request path (may be empty)."""
    for pattern, key in _RESOURCE_PATTERNS:
        match = pattern.match(path)
        if match:
            return {key: match.group("id")}
    match = _SIMULATE_PATTERN.match(path)
    if match:
        return {"disaster_type": match.group("type").upper()}
    return {}


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Access log, correlation ID and resource-scoped log context."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:16]
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path
        resource = resource_context(path)

        set_request_context(
            request_id=request_id,
            client_ip=client_ip,
            endpoint=path,
            method=request.method,
            **resource,
        )
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error(
                "%s %s → unhandled %s (%.1fms) [%s]",
                request.method, path, type(exc).__name__,
                (time.perf_counter() - start) * 1000, client_ip,
                extra={"status_code": 500, **resource},
            )
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            set_request_context()

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if path.startswith(_QUIET_PREFIXES):
            level = logging.DEBUG
        elif response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code >= 400:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            "%s %s → %d (%.1fms) [%s]",
            request.method, path, response.status_code, duration_ms, client_ip,
            extra={
                "duration_ms": duration_ms,
                "status_code": response.status_code,
                "endpoint": path,
                **resource,
            },
        )
        return response
