"""Configuration loader for dashsnap."""

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from dashsnap.config.schema import Config

DEFAULT_CONFIG_DIR = Path.home() / ".dashsnap"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.json"
CONFIG_PATH_ENV = "DASHSNAP_CONFIG"


def resolve_config_path(config_path: Path | None = None) -> Path:
    """Explicit path, then ``$DASHSNAP_CONFIG``, then ~/.dashsnap/config.json."""
    if config_path is not None:
        return Path(config_path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_FILE


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file and environment variables.

    A missing or unreadable file is not fatal: the service starts on
    defaults so a bad edit never keeps the capture loop down.

    Args:
        config_path: Optional path to config file.

    Returns:
        Loaded configuration.
    """
    path = resolve_config_path(config_path)
    if not path.exists():
        logger.debug(f"No config at {path}, using defaults")
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        config = Config(**data)
    except (OSError, TypeError, json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Failed to load config from {path}: {e}, using defaults")
        return Config()

    logger.debug(f"Config loaded from {path}")
    return config


def save_default_config(config_path: Path | None = None, overwrite: bool = False) -> Path:
    """
    Write a default configuration file.

    An existing file is left alone unless ``overwrite`` is set.

    Returns:
        Path of the config file.
    """
    path = resolve_config_path(config_path)
    if path.exists() and not overwrite:
        logger.info(f"Config already exists at {path}")
        return path

    path.parent.mkdir(parents=True, exist_ok=True)
    data = Config().model_dump(mode="json")
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    logger.info(f"Default config saved to {path}")
    return path


def ensure_workspace(config: Config) -> Path:
    """Create the screenshot output directory and the schedules file's parent; return the former."""
    output = config.output_path
    output.mkdir(parents=True, exist_ok=True)
    config.schedules_path.parent.mkdir(parents=True, exist_ok=True)
    return output
