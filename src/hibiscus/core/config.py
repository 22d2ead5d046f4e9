"""Application configuration using Pydantic BaseSettings."""

import logging
from typing import Any

import structlog
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from hibiscus.models.job import JobKind

FILENAME_FORMATS = ("prompt", "timestamp", "both")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    # Application Environment
    app_env: str = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CORS Configuration
    cors_origins: str = Field(default="http://localhost:3000", alias="CORS_ORIGINS")

    # Server Configuration
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")

    # Upstream generation API
    # Comma-separated list of keys, rotated on balance failures
    api_key: str = Field(default="", alias="HIBISCUS_API_KEY")
    api_base_url: str = Field(default="https://gen.pollinations.ai", alias="API_BASE_URL")
    connect_timeout_seconds: float = Field(default=10.0, alias="CONNECT_TIMEOUT_SECONDS")
    video_timeout_seconds: float = Field(default=300.0, alias="VIDEO_TIMEOUT_SECONDS")

    # Retry budgets
    max_retries: int = Field(default=3, ge=1, alias="MAX_RETRIES")
    max_safety_retries: int = Field(default=50, ge=1, alias="MAX_SAFETY_RETRIES")
    job_safety_retries: int = Field(default=30, ge=0, alias="JOB_SAFETY_RETRIES")

    # Parallel jobs
    max_concurrent_jobs: int = Field(default=6, ge=1, alias="MAX_CONCURRENT_JOBS")
    completed_job_ttl_seconds: float = Field(default=2.0, alias="COMPLETED_JOB_TTL_SECONDS")
    job_cleanup_age_seconds: float = Field(default=300.0, alias="JOB_CLEANUP_AGE_SECONDS")
    job_cleanup_interval_seconds: float = Field(default=60.0, alias="JOB_CLEANUP_INTERVAL_SECONDS")
    recent_items_limit: int = Field(default=5, ge=1, alias="RECENT_ITEMS_LIMIT")

    # Gallery persistence server
    gallery_url: str = Field(default="http://localhost:3333", alias="GALLERY_URL")

    # Downloads
    auto_download: bool = Field(default=False, alias="AUTO_DOWNLOAD")
    download_dir: str = Field(default="Hibiscus", alias="DOWNLOAD_DIR")
    filename_format: str = Field(default="both", alias="FILENAME_FORMAT")

    # Generation defaults
    default_image_model: str = Field(default="flux", alias="DEFAULT_IMAGE_MODEL")
    default_video_model: str = Field(default="veo", alias="DEFAULT_VIDEO_MODEL")
    default_width: int = Field(default=1024, alias="DEFAULT_WIDTH")
    default_height: int = Field(default=1024, alias="DEFAULT_HEIGHT")
    default_video_duration: int = Field(default=5, alias="DEFAULT_VIDEO_DURATION")

    @field_validator("filename_format")
    @classmethod
    def validate_filename_format(cls, v: str) -> str:
        if v not in FILENAME_FORMATS:
            raise ValueError(f"FILENAME_FORMAT must be one of {', '.join(FILENAME_FORMATS)}")
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins from comma-separated string."""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    @property
    def credentials_list(self) -> list[str]:
        """Parse API keys from comma-separated string, dropping blanks."""
        return [key.strip() for key in self.api_key.split(",") if key.strip()]

    def generation_defaults(self, kind: JobKind) -> dict[str, Any]:
        """Default request parameters for a job kind.

        Caller-supplied parameters are merged on top of these at submission time.
        """
        if kind is JobKind.VIDEO:
            return {
                "model": self.default_video_model,
                "duration": self.default_video_duration,
                "private": True,
                "nofeed": True,
            }
        return {
            "model": self.default_image_model,
            "width": self.default_width,
            "height": self.default_height,
            "seed": -1,
            "safe": True,
            "private": True,
            "nofeed": True,
        }


def configure_logging(settings: Settings) -> None:
    """Configure structlog based on application environment.

    - Production: JSON output for log aggregation
    - Development: Console output for human readability

    Events below LOG_LEVEL are dropped.
    """
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    if settings.app_env == "production":
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
    else:
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.dev.ConsoleRenderer(),
            ],
            wrapper_class=structlog.make_filtering_bound_logger(level),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )
