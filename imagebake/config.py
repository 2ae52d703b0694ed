"""Configuration settings for imagebake.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.

All on-disk state lives under ``base_dir``:

    sources/          per-source working directories
    artifacts/        build outputs
    sources.cfg       optional declarative hook configuration
    .data/cache       download and Packer cache
    .data/tmp         scratch space
    .data/packer      installed Packer binary
    .data/run.log     log of the last run
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Pinned Packer release installed under .data/packer
DEFAULT_PACKER_VERSION = "1.11.2"

# Official HashiCorp release server for Packer archives
PACKER_DOWNLOAD_BASE = "https://releases.hashicorp.com/packer"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the IMAGEBAKE_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="IMAGEBAKE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    base_dir: Path = Field(
        default_factory=Path.cwd,
        description="Root directory holding sources, artifacts and .data",
    )

    # Packer provisioning
    packer_version: str = Field(
        default=DEFAULT_PACKER_VERSION,
        min_length=1,
        description="Pinned Packer version to install",
    )
    packer_download_base: str = Field(
        default=PACKER_DOWNLOAD_BASE,
        description="Base URL for Packer release archives",
    )
    packer_arch: str = Field(
        default="amd64",
        description="Architecture suffix of the Packer archive",
    )

    # Sources
    template_name: str = Field(
        default="template.json",
        description="Template descriptor file name inside a source",
    )
    default_branch: str = Field(
        default="master",
        description="Branch checked out when none is requested",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for Packer archive downloads",
    )
    build_timeout: int | None = Field(
        default=None,
        ge=60,
        description="Timeout for packer build (no timeout if not set)",
    )
    hook_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for each pre-build hook (no timeout if not set)",
    )

    @property
    def sources_dir(self) -> Path:
        return self.base_dir / "sources"

    @property
    def artifacts_dir(self) -> Path:
        return self.base_dir / "artifacts"

    @property
    def sources_cfg_path(self) -> Path:
        return self.base_dir / "sources.cfg"

    @property
    def data_dir(self) -> Path:
        return self.base_dir / ".data"

    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"

    @property
    def tmp_dir(self) -> Path:
        return self.data_dir / "tmp"

    @property
    def packer_dir(self) -> Path:
        return self.data_dir / "packer"

    @property
    def packer_bin(self) -> Path:
        return self.packer_dir / "packer"

    @property
    def log_path(self) -> Path:
        return self.data_dir / "run.log"


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


__all__ = [
    "DEFAULT_PACKER_VERSION",
    "PACKER_DOWNLOAD_BASE",
    "Settings",
    "get_settings",
    "print_settings_json",
]
