"""
HTTP request metrics keyed by route template
"""
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from chatrelay.core.metrics import (http_errors_total,
                                    http_request_duration_seconds,
                                    http_requests_in_progress,
                                    http_requests_total)

UNMATCHED_ROUTE = "unmatched"


def route_template(request: Request) -> str:
    """
    Path template of the route that handled the request.

    Unknown paths share one label so scanners cannot grow the label set.
    """
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Counts requests and errors and observes latency per route.

    For event-stream responses the observed duration ends when the headers
    are sent, which is when the first reply chunk is available.
    """

    def __init__(self, app, skip_paths=("/metrics",)):
        super().__init__(app)
        self.skip_paths = set(skip_paths)

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.skip_paths:
            return await call_next(request)

        method = request.method
        in_progress = http_requests_in_progress.labels(method=method)
        in_progress.inc()
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as e:
            self._record(request, 500, time.perf_counter() - start_time, type(e).__name__)
            raise
        finally:
            in_progress.dec()

        self._record(request, response.status_code, time.perf_counter() - start_time)
        return response

    @staticmethod
    def _record(request: Request, status_code: int, duration: float, error_type: str = None):
        labels = {
            "method": request.method,
            "endpoint": route_template(request),
            "status_code": str(status_code),
        }
        http_requests_total.labels(**labels).inc()
        http_request_duration_seconds.labels(**labels).observe(duration)
        if status_code >= 400:
            http_errors_total.labels(**labels, error_type=error_type or f"http_{status_code}").inc()
