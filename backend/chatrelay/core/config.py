"""
Configuration management using Pydantic Settings
"""
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# config.py is at: backend/chatrelay/core/config.py
# Project root is: backend/chatrelay/core/../../../
_current_file = Path(__file__).resolve()
_backend_dir = _current_file.parent.parent.parent
_project_root = _backend_dir.parent
ENV_FILE = _project_root / ".env"
# Fallback: try in backend/ directory if not found in project root
if not ENV_FILE.exists():
    ENV_FILE = _backend_dir / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE, override=False)


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer clearly and concisely. "
    "When the user attaches a document, base your answer on its contents."
)


class Settings(BaseSettings):
    """Application settings"""

    # Application
    app_name: str = "ChatRelay"
    app_env: str = Field(default="development", description="Application environment")
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=3000, ge=1, le=65535, description="API port")
    allowed_origins: str = Field(
        default="*",
        description="Allowed CORS origins (comma-separated, '*' for any)"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="json",
        description="Log format: 'json' for structured logging, 'text' for plain text"
    )
    log_uvicorn_access: bool = Field(default=False, description="Enable Uvicorn access logging")
    log_module_levels: Optional[str] = Field(
        default=None,
        description='Module-specific log levels (JSON string, e.g., {"chatrelay.api": "DEBUG"})'
    )
    log_file_enabled: bool = Field(default=False, description="Enable file logging")
    log_file_path: str = Field(
        default="logs/chatrelay.log",
        description="Path to log file (relative to project root)"
    )
    log_file_retention: int = Field(default=14, ge=1, description="Number of days to keep log files")
    log_sensitive_data: bool = Field(
        default=False,
        description="Enable logging of sensitive data (API keys, tokens) - NOT RECOMMENDED"
    )

    # Upstream provider (OpenAI-compatible API)
    provider_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the completion/image provider"
    )
    provider_api_key: str = Field(default="", description="API key sent as a bearer token")
    chat_model: str = Field(default="gpt-4o-mini", description="Model used for chat completions")
    image_model: str = Field(default="gpt-image-1", description="Model used for image generation")
    default_max_tokens: int = Field(default=1024, ge=1, description="max_tokens when the caller sends none")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    provider_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Timeout for a single provider request (seconds)"
    )

    # Conversation
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, description="Initial system policy")
    admin_token: Optional[str] = Field(
        default=None,
        description="When set, required in X-Admin-Token to change the system prompt"
    )
    history_max_turns: Optional[int] = Field(
        default=None,
        ge=1,
        description="Most recent turns kept in the upstream context (unset = all)"
    )
    max_file_chars: int = Field(
        default=20000,
        ge=1,
        description="Extracted document text is truncated to this many characters"
    )
    stop_acknowledgement: str = Field(
        default="Generation stopped.",
        description="Reply returned when a request carries stop=true"
    )

    # Images
    image_size: str = Field(default="1024x1024", description="Default image size")
    image_max_count: int = Field(default=4, ge=1, le=10, description="Upper bound for n")
    image_prompt_rewrite: bool = Field(
        default=False,
        description="Rewrite image prompts into detailed descriptions before generating"
    )
    image_context_turns: int = Field(
        default=4,
        ge=0,
        description="Recent conversation turns folded into image prompts"
    )

    # Rate limiting
    rate_limit_enabled: bool = Field(default=True, description="Enable per-address rate limiting")
    rate_limit_requests: int = Field(default=60, ge=1, description="Requests allowed per window")
    rate_limit_window_seconds: int = Field(default=60, ge=1, description="Rate limit window (seconds)")

    @field_validator("provider_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse CORS origins from comma-separated string"""
        if self.allowed_origins.strip() == "*":
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE) if ENV_FILE.exists() else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
