"""Configuration loading utilities."""

from __future__ import annotations

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from safehost.config.schema import Config

_TRUTHY = {"1", "true", "yes", "on"}


def get_data_dir() -> Path:
    """Get the tool-owned state directory."""
    return Path(os.environ.get("SAFEHOST_HOME", "~/.safehost")).expanduser()


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return get_data_dir() / "config.json"


def _apply_env_overrides(config: Config) -> Config:
    if "SAFEHOST_HOME" in os.environ:
        config.state_dir = str(get_data_dir())
    production = os.environ.get("SAFEHOST_PRODUCTION")
    if production is not None:
        config.production = production.strip().lower() in _TRUTHY
    level = os.environ.get("SAFEHOST_LOG_LEVEL")
    if level:
        config.logging.level = level.strip().upper()
    return config


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    config = Config()
    if path.exists():
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            config = Config.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as e:
            logger.warning("Failed to load config from {}: {}", path, e)
            logger.warning("Using default configuration.")
            config = Config()

    return _apply_env_overrides(config)


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to file."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump()
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
