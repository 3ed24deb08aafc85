from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from app.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("app.request")

# Scrapes and probes would drown the request log.
_QUIET_PATHS = {"/api/health", "/api/metrics"}


def _finish(method: str, path: str, status_code: int, started: float, *, failed: bool = False) -> None:
    duration = time.perf_counter() - started
    observe_http_request(method=method, path=path, status=status_code, duration=duration)
    fields = {
        "method": method,
        "path": path,
        "status_code": status_code,
        "duration_ms": round(duration * 1000, 2),
    }
    if failed:
        logger.error("http.error", exc_info=True, extra=fields)
    elif status_code >= 500:
        logger.warning("http.request", extra=fields)
    elif path not in _QUIET_PATHS:
        logger.info("http.request", extra=fields)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        method = request.method
        path = resolve_http_path_label(request)
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            _finish(method, path, 500, started, failed=True)
            raise
        _finish(method, path, response.status_code, started)
        return response
