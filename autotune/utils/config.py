"""Configuration utilities for loading YAML settings."""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


def default_config_path() -> Path:
    """Location of the YAML settings file when none is given."""
    env_path = os.getenv("AUTOTUNE_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return Path.home() / ".config" / "autotune" / "config.yaml"


def load_yaml_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load a YAML settings file.

    Args:
        config_path: Path to config file. If None, uses the default location.

    Returns:
        Configuration dictionary, empty when the file is missing or unreadable.
    """
    if config_path is None:
        config_path = default_config_path()

    if not os.path.exists(config_path):
        return {}

    try:
        with open(config_path) as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load config from {config_path}: {e}")
        return {}

    if not isinstance(config, dict):
        logger.warning(f"Ignoring config at {config_path}: top level must be a mapping")
        return {}
    return config
