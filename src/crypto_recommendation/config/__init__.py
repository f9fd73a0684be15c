"""Configuration helpers."""

from .paths import expand_env_path
from .settings import DEFAULT_PUBLIC_PATH_PREFIXES, Settings

__all__ = ["DEFAULT_PUBLIC_PATH_PREFIXES", "Settings", "expand_env_path"]
