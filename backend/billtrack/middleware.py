from __future__ import annotations

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger("billtrack.requests")


class RequestLogMiddleware(BaseHTTPMiddleware):
    """Log every request with its status and duration."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("%s %s failed", request.method, request.url.path)
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "%s %s -> %s (%.1f ms) user=%s",
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            self._user(request),
        )
        return response

    def _user(self, request: Request) -> str:
        return request.headers.get("X-User-Id") or "-"
