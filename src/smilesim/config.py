"""Environment-based configuration for SmileSim."""

from __future__ import annotations

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from SMILESIM_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="SMILESIM_",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication for the HTTP API (None = disabled)
    api_key: str | None = None

    # Inference service credential (None = MissingCredential on generate)
    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SMILESIM_GEMINI_API_KEY", "GEMINI_API_KEY", "gemini_api_key"),
    )
    model: str = "gemini-2.5-flash-image"
    request_timeout: float = Field(default=60.0, gt=0)

    # Retry policy for transient service failures
    max_retries: int = Field(default=2, ge=0)
    retry_base_delay: float = Field(default=2.0, ge=0)

    # Camera
    camera_index: int = Field(default=0, ge=0)
    device_timeout: float = Field(default=5.0, gt=0)

    # Image limits
    max_dimension: int = Field(default=1024, ge=1)
    jpeg_quality: int = Field(default=90, ge=1, le=95)
    max_upload_size: int = Field(default=20_971_520, ge=1)
    max_image_pixels: int = Field(default=16_777_216, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
