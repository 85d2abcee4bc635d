"""Configuration file loading."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from diffsight.config.settings import Settings
from diffsight.models import AnalysisMode, ReviewMode

CONFIG_FILENAMES = [".diffsight.yaml", ".diffsight.yml", "diffsight.yaml", "diffsight.yml"]


class ConfigError(Exception):
  """Config file is unreadable or invalid."""


def _find_config_file(config_path: Path | None = None) -> Path | None:
  """Find config file path, or None if no config exists."""
  if config_path:
    if not config_path.exists():
      raise ConfigError(f"Config file not found: {config_path}")
    return config_path

  for filename in CONFIG_FILENAMES:
    path = Path.cwd() / filename
    if path.exists():
      return path

  return None


def load_config(config_path: Path | None = None) -> Settings:
  """Load configuration from file or defaults."""
  path = _find_config_file(config_path)
  if path:
    return _load_from_file(path)
  return Settings()


def _load_from_file(path: Path) -> Settings:
  """Load settings from a YAML file."""
  try:
    with open(path) as f:
      data = yaml.safe_load(f) or {}
  except yaml.YAMLError as e:
    raise ConfigError(f"Invalid YAML in {path}: {e}") from e

  if not isinstance(data, dict):
    raise ConfigError(f"Config file {path} must contain a mapping")

  try:
    return _parse_config(data)
  except (ValueError, ValidationError) as e:
    raise ConfigError(f"Invalid config in {path}: {e}") from e


def _parse_config(data: dict) -> Settings:
  """Parse config dict into Settings."""
  if "review_mode" in data:
    data["review_mode"] = ReviewMode(data["review_mode"])

  if "analysis" in data:
    data["analysis"] = AnalysisMode(data["analysis"])

  return Settings(**data)
