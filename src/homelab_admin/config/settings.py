"""Configuration management for homelab-admin.

Loads settings from a YAML configuration file with environment variable
overrides. Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/homelab-admin.yaml")


class RepositoryConfig(BaseModel):
    path: Path = Field(default=Path("/etc/nixos"), description="Checked-out configuration repository")


class CommandsConfig(BaseModel):
    git_executable: str = Field(default="git")
    sudo_executable: str = Field(default="sudo")
    rebuild_executable: str = Field(default="nixos-rebuild")
    fetch_timeout: float = Field(default=60.0, gt=0, description="Budget for fetch-changes (seconds)")
    apply_timeout: float = Field(default=600.0, gt=0, description="Budget for apply-configuration (seconds)")
    drain_timeout: float = Field(default=5.0, gt=0, description="Wait for open pipes after exit (seconds)")
    grace_period: float = Field(default=300.0, ge=0, description="Retention of finished sessions (seconds)")
    encoding: str = Field(default="utf-8")
    read_chunk_size: int = Field(default=4096, gt=0)


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=8420, ge=1, le=65535)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for the homelab-admin service.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "HOMELAB_ADMIN_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    repository: RepositoryConfig = Field(default_factory=RepositoryConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: YAML file > env vars > .env file > defaults. HOMELAB_REPO_PATH
    is applied on top of the YAML data.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    yaml_data: dict = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _apply_env_overrides(yaml_data: dict) -> None:
    """Apply environment variable overrides for non-prefixed vars."""
    repo_path = os.environ.get("HOMELAB_REPO_PATH", "")
    if repo_path:
        yaml_data.setdefault("repository", {})
        yaml_data["repository"]["path"] = repo_path
