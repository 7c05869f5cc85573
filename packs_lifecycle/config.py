"""Configuration settings for packs_lifecycle.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the PACKS_LIFECYCLE_
    prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="PACKS_LIFECYCLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    launch_dir: Path = Field(
        default=Path("/launch"),
        description="Launch directory buildpack layers are restored into",
    )
    group_path: Path = Field(
        default=Path("/buildpacks/group.toml"),
        description="Path to the buildpack group TOML file",
    )
    image_launch_dir: str = Field(
        default="launch",
        min_length=1,
        description="Location of the launch directory inside image layers",
    )

    # Labels
    metadata_label: str = Field(
        default="sh.packs.build",
        min_length=1,
        description="Image label holding the encoded build metadata",
    )

    # Image sources
    use_daemon: bool = Field(
        default=False,
        description="Resolve images against the local daemon instead of a registry",
    )
    docker_host: str = Field(
        default="unix:///var/run/docker.sock",
        description="Daemon endpoint (unix://, tcp:// or http(s)://)",
    )
    registry_username: str | None = Field(
        default=None,
        description="Username for registry token requests",
    )
    registry_password: SecretStr | None = Field(
        default=None,
        description="Password for registry token requests",
    )
    insecure_registries: list[str] = Field(
        default_factory=list,
        description="Registries reached over plain HTTP",
    )
    platform_os: str = Field(default="linux", description="Platform OS")
    platform_architecture: str = Field(
        default="amd64", description="Platform architecture"
    )

    # Concurrency
    max_workers: int = Field(
        default=4,
        ge=1,
        le=32,
        description="Maximum concurrent layer builds during export",
    )

    # Network
    fetch_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Extra attempts for idempotent manifest and blob fetches",
    )
    request_timeout: int = Field(
        default=60,
        ge=1,
        description="Timeout for registry and daemon requests (seconds)",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
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
