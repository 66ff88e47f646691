"""Environment-based configuration for ImageHandler."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from IMAGEHANDLER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEHANDLER_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080

    # Authentication (None = disabled)
    api_key: str | None = None

    # AWS
    aws_region: str = "us-east-1"
    s3_endpoint_url: str | None = None
    source_bucket: str | None = None

    # Concurrency for blocking S3/Rekognition calls
    max_concurrent: int = Field(default=4, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=89_478_485, ge=1)
    max_file_size: int = Field(default=6_291_456, ge=1)

    # Encoding
    jpeg_quality: int = Field(default=80, ge=1, le=100)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
