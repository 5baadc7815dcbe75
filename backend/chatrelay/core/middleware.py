"""
FastAPI middleware for request context, logging and rate limiting
"""
import math
import time
import uuid
from typing import Callable, Dict, Tuple

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from chatrelay.core.errors import RateLimitError
from chatrelay.core.logging_config import LoggingConfig
from chatrelay.core.metrics import rate_limited_total

logger = LoggingConfig.get_logger(__name__)


class LoggingContextMiddleware(BaseHTTPMiddleware):
    """Middleware to add request context to logs"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Add request context and log request/response"""
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())

        LoggingConfig.set_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_host=request.client.host if request.client else None,
        )

        start_time = time.time()
        logger.info("Request started")

        try:
            response = await call_next(request)

            duration_ms = int((time.time() - start_time) * 1000)
            logger.info(
                "Request completed",
                extra={
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                }
            )

            response.headers["X-Request-ID"] = request_id
            return response

        except Exception as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed",
                exc_info=True,
                extra={
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "duration_ms": duration_ms,
                }
            )
            raise

        finally:
            LoggingConfig.clear_context()


class FixedWindowRateLimiter:
    """
    Fixed request budget per key per time window.

    Excess requests are rejected outright; there is no queueing.
    """

    def __init__(self, limit: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Tuple[int, int]] = {}

    def hit(self, key: str) -> Tuple[bool, int]:
        """
        Count one request for ``key``.

        Returns:
            (allowed, retry_after_seconds)
        """
        now = self._clock()
        window = int(now // self.window_seconds)
        current_window, count = self._windows.get(key, (window, 0))
        if current_window != window:
            count = 0
            if len(self._windows) > 10000:
                self._prune(window)
        if count >= self.limit:
            retry_after = math.ceil((window + 1) * self.window_seconds - now)
            return False, max(retry_after, 1)
        self._windows[key] = (window, count + 1)
        return True, 0

    def _prune(self, window: int):
        self._windows = {k: v for k, v in self._windows.items() if v[0] == window}


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects /api requests beyond the per-address budget with 429"""

    def __init__(self, app, limit: int, window_seconds: int, path_prefix: str = "/api"):
        super().__init__(app)
        self.limiter = FixedWindowRateLimiter(limit, window_seconds)
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client_host = request.client.host if request.client else "unknown"
        allowed, retry_after = self.limiter.hit(client_host)
        if not allowed:
            rate_limited_total.labels(endpoint=request.url.path).inc()
            logger.warning(
                "Rate limit exceeded",
                extra={"client_host": client_host, "retry_after": retry_after}
            )
            error = RateLimitError(
                "Too many requests",
                details={"limit": self.limiter.limit, "window_seconds": self.limiter.window_seconds},
            )
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_dict(),
                headers={"Retry-After": str(retry_after)},
            )

        return await call_next(request)
