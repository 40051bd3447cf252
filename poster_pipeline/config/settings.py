"""
Application Settings
====================

Application settings and environment configuration using Pydantic Settings.
Supports development, testing, and production environments.
"""

from typing import Optional
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pathlib import Path


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="Poster Pipeline", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )
    debug: bool = Field(default=True, description="Debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Storage Configuration
    storage_path: Path = Field(default=Path("./storage"), description="Storage directory path")
    output_path: Path = Field(
        default=Path("./storage/artifacts"), description="Artifact delivery directory"
    )

    # Batch Configuration
    settle_delay: float = Field(
        default=0.1, ge=0, description="Seconds to let a mounted surface settle before rasterizing"
    )
    inter_task_delay: float = Field(
        default=0.3, ge=0, description="Seconds to wait between batch tasks"
    )
    download_stagger: float = Field(
        default=0.2, ge=0, description="Seconds between consecutive artifact deliveries"
    )
    raster_scale: float = Field(default=2.0, gt=0, le=4.0, description="Rasterization scale")
    raster_timeout: Optional[float] = Field(
        default=60.0, description="Rasterization timeout in seconds, None waits forever"
    )
    mount_background: str = Field(default="#ffffff", description="Mount surface background")
    optimize_png: bool = Field(default=False, description="Re-encode artifacts with Pillow")

    # Variant and Artifact Naming
    artifact_suffix: str = Field(default="邀请函", description="Artifact filename suffix")
    variant_token: str = Field(default="XXX女士", description="Placeholder replaced per variant")
    variant_replacement: str = Field(
        default="{name}女士", description="Replacement pattern, {name} is the variant name"
    )

    # Browser Configuration
    playwright_headless: bool = Field(default=True, description="Run browser in headless mode")
    playwright_timeout: int = Field(default=30000, description="Playwright timeout in milliseconds")
    browser_pool_size: int = Field(default=1, ge=1, description="Browser instance pool size")
    mount_javascript_enabled: bool = Field(
        default=False, description="Allow scripts inside mounted markup"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("variant_replacement")
    @classmethod
    def validate_variant_replacement(cls, v: str) -> str:
        """Require the {name} placeholder in the replacement pattern."""
        if "{name}" not in v:
            raise ValueError("Variant replacement must contain '{name}'")
        return v

    @field_validator("storage_path", "output_path")
    @classmethod
    def create_directories(cls, v: Path) -> Path:
        """Ensure directories exist."""
        v.mkdir(parents=True, exist_ok=True)
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="POSTER_PIPELINE_",
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
