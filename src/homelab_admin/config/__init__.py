"""Configuration management for homelab-admin.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides, including the un-prefixed
HOMELAB_REPO_PATH for the repository location.
"""

from homelab_admin.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
