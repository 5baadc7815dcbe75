"""
Main FastAPI application entry point
"""
from chatrelay.core.config import get_settings
from chatrelay.main import app

__all__ = ["app"]


if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.app_env == "development",
        access_log=settings.log_uvicorn_access,
    )
