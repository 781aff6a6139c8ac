"""Configuration settings for fatbuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_derived_data_dir() -> Path:
    """Return the default shared derived data directory."""
    return Path.home() / "Library" / "Caches" / "fatbuild" / "DerivedData"


def _default_logs_dir() -> Path:
    """Return the default directory for build logs."""
    return Path.home() / ".cache" / "fatbuild" / "logs"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the FATBUILD_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="FATBUILD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Toolchain
    xcrun_path: str = Field(
        default="/usr/bin/xcrun",
        description="Path to xcrun, used to locate every toolchain binary",
    )

    # Paths
    derived_data_dir: Path = Field(
        default_factory=_default_derived_data_dir,
        description="Shared derived data directory passed to xcodebuild",
    )
    build_dir_name: str = Field(
        default="Carthage/Build",
        description="Output directory for built frameworks, relative to the root",
    )
    checkouts_dir_name: str = Field(
        default="Carthage/Checkouts",
        description="Directory holding checked out dependencies, relative to a project",
    )
    logs_dir: Path = Field(
        default_factory=_default_logs_dir,
        description="Directory for xcodebuild logs",
    )

    # Build defaults
    configuration: str = Field(
        default="Release",
        description="Default build configuration",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    settings_query_timeout: float = Field(
        default=60,
        gt=0,
        description="Timeout for xcodebuild -showBuildSettings queries",
    )
    destination_timeout: int = Field(
        default=10,
        ge=1,
        description="Simulator destination lookup timeout passed to xcodebuild",
    )
    lock_timeout: float | None = Field(
        default=None,
        ge=0,
        description="Timeout for the derived data lock (None = wait forever)",
    )


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
