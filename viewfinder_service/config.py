"""
Configuration management for Viewfinder Service.

Uses Pydantic BaseSettings for type-safe configuration with environment variable support.
All settings can be overridden via environment variables with the VIEWFINDER_ prefix.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CONTROL_BACKENDS = {"recording", "picamera2"}
CAMERA_MODES = {"portrait", "photo", "video", "pro"}


class ViewfinderConfig(BaseSettings):
    """
    Viewfinder core and API configuration.

    All settings can be overridden via environment variables:
    - VIEWFINDER_CONTROL_BACKEND: Capture control backend (recording, picamera2)
    - VIEWFINDER_INITIAL_MODE: Camera mode on startup (portrait, photo, video, pro)
    - VIEWFINDER_REQUEST_HISTORY_SIZE: Requests kept by the recording backend
    - VIEWFINDER_MAX_IMAGE_PIXELS: Largest overlay image accepted, in pixels
    - VIEWFINDER_IMAGE_ROOT: Directory overlay files are served from (optional)
    - VIEWFINDER_API_KEY: API key for authentication (optional, disables auth if not set)
    - VIEWFINDER_HOST: API server host
    - VIEWFINDER_PORT: API server port
    - VIEWFINDER_LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    model_config = SettingsConfigDict(
        env_prefix="VIEWFINDER_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Capture control
    control_backend: str = Field(
        default="recording",
        description="Capture control backend (recording, picamera2)",
    )
    initial_mode: str = Field(
        default="photo",
        description="Camera mode selected on startup",
    )
    request_history_size: int = Field(
        default=256,
        description="Capture requests kept by the recording backend",
        ge=1,
        le=100_000,
    )

    # Overlay pipeline
    max_image_pixels: int = Field(
        default=40_000_000,
        description="Maximum decoded overlay image size in pixels",
        ge=1,
        le=200_000_000,
    )
    image_root: Path | None = Field(
        default=None,
        description="Directory overlay files may be loaded from (file loading disabled if not set)",
    )

    # API server configuration
    host: str = Field(
        default="0.0.0.0",
        description="API server host",
    )
    port: int = Field(
        default=8000,
        description="API server port",
        ge=1,
        le=65535,
    )

    # Security
    api_key: str | None = Field(
        default=None,
        description="API key for authentication (if not set, authentication is disabled)",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v_upper

    @field_validator("control_backend")
    @classmethod
    def validate_control_backend(cls, v: str) -> str:
        """Validate the capture control backend name."""
        v_lower = v.lower()
        if v_lower not in CONTROL_BACKENDS:
            raise ValueError(f"Control backend must be one of {CONTROL_BACKENDS}")
        return v_lower

    @field_validator("initial_mode")
    @classmethod
    def validate_initial_mode(cls, v: str) -> str:
        """Validate the startup camera mode."""
        v_lower = v.lower()
        if v_lower not in CAMERA_MODES:
            raise ValueError(f"Initial mode must be one of {CAMERA_MODES}")
        return v_lower


# Global configuration instance
CONFIG = ViewfinderConfig()
