"""Configuration management."""

from diffsight.config.loader import ConfigError, load_config
from diffsight.config.settings import Settings

__all__ = ["ConfigError", "Settings", "load_config"]
