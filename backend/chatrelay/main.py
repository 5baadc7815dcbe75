"""
FastAPI application factory
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatrelay.api.routes import chat, health, images, system_prompt
from chatrelay.core.config import Settings, get_settings
from chatrelay.core.errors import InternalError, RelayError, ValidationError
from chatrelay.core.logging_config import LoggingConfig
from chatrelay.core.middleware import (LoggingContextMiddleware,
                                       RateLimitMiddleware)
from chatrelay.core.middleware_metrics import MetricsMiddleware
from chatrelay.core.provider_client import get_provider_client
from chatrelay.core.system_policy import get_system_policy

# Configure logging first
LoggingConfig.configure()

logger = LoggingConfig.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan events for FastAPI app"""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")
    if not settings.provider_api_key:
        logger.warning("PROVIDER_API_KEY is not set; provider requests will be unauthenticated")
    if not get_system_policy().protected:
        logger.warning("ADMIN_TOKEN is not set; any caller can change the system prompt")

    yield

    logger.info(f"Shutting down {settings.app_name}...")
    await get_provider_client().close()


async def relay_error_handler(request: Request, exc: RelayError):
    """Map taxonomy errors onto {error, details} bodies"""
    if exc.status_code >= 500:
        logger.error(
            f"{exc.error_type} error: {exc.message}",
            extra={
                "error_type": exc.error_type,
                "details": exc.details,
                "path": request.url.path,
            }
        )
    else:
        logger.info(
            f"Rejected request: {exc.message}",
            extra={"error_type": exc.error_type, "path": request.url.path}
        )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Body schema violations are reported like missing fields (400)"""
    error = ValidationError("Invalid request body", details=jsonable_encoder(exc.errors()))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def global_exception_handler(request: Request, exc: Exception):
    """Log unexpected failures with detail; the caller only gets a generic message"""
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={
            "error": str(exc),
            "error_type": type(exc).__name__,
            "path": request.url.path,
            "method": request.method,
        }
    )
    error = InternalError("Internal server error")
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def create_app(settings: Settings = None) -> FastAPI:
    """Build the application with middleware, error handlers and routers"""
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Relay for chat and image generation requests to an AI provider",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Innermost first: the rate limiter sits inside metrics and logging so
    # rejected requests are still counted and logged.
    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            limit=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(LoggingContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials="*" not in settings.allowed_origins_list,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(health.router)
    app.include_router(chat.router)
    app.include_router(images.router)
    app.include_router(system_prompt.router)

    return app


app = create_app()
