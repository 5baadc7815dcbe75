"""
Prometheus metrics configuration
"""
from prometheus_client import (CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, Info,
                               generate_latest)
from prometheus_client.registry import REGISTRY

from chatrelay.core.config import get_settings

# ============================================================================
# HTTP Request Metrics
# ============================================================================

http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint', 'status_code'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
)

http_errors_total = Counter(
    'http_errors_total',
    'Total number of HTTP errors',
    ['method', 'endpoint', 'status_code', 'error_type']
)

http_requests_in_progress = Gauge(
    'http_requests_in_progress',
    'HTTP requests currently being handled',
    ['method']
)

rate_limited_total = Counter(
    'rate_limited_total',
    'Requests rejected by the rate limiter',
    ['endpoint']
)

# ============================================================================
# Upstream Provider Metrics
# ============================================================================

upstream_requests_total = Counter(
    'upstream_requests_total',
    'Total number of provider requests',
    ['operation', 'model', 'status']  # operation: 'chat', 'chat_stream', 'image'
)

upstream_request_duration_seconds = Histogram(
    'upstream_request_duration_seconds',
    'Provider request duration in seconds',
    ['operation', 'model'],
    buckets=(0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 120.0)
)

upstream_errors_total = Counter(
    'upstream_errors_total',
    'Total number of provider errors',
    ['operation', 'model', 'error_type']
)

images_generated_total = Counter(
    'images_generated_total',
    'Total number of images returned to callers',
    ['model']
)

# ============================================================================
# System Info
# ============================================================================

app_info = Info(
    'app_info',
    'Application information'
)

_settings = get_settings()
app_info.info({
    'app_name': _settings.app_name,
    'app_env': _settings.app_env,
    'version': '0.1.0'
})


def get_metrics():
    """
    Get Prometheus metrics in text format

    Returns:
        bytes: Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_metrics_content_type():
    return CONTENT_TYPE_LATEST
