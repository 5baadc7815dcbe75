"""
Health check and metrics endpoints
"""
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse, Response

from chatrelay.core.config import get_settings
from chatrelay.core.logging_config import LoggingConfig
from chatrelay.core.metrics import get_metrics, get_metrics_content_type

router = APIRouter(tags=["health"])

HEALTH_TEXT = "Chat relay is running"


@router.get("/", response_class=PlainTextResponse)
async def root():
    """Static liveness string"""
    return HEALTH_TEXT


@router.get("/health")
async def health_check():
    """
    Basic health check endpoint

    Returns:
        dict: Health status
    """
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": get_settings().app_name,
        "log_counts": LoggingConfig.get_metrics(),
    }


@router.get("/metrics")
async def metrics():
    """Prometheus metrics in text format"""
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
