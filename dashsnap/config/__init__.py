"""Configuration module."""

from dashsnap.config.schema import Config
from dashsnap.config.loader import ensure_workspace, load_config, resolve_config_path, save_default_config

__all__ = ["Config", "load_config", "save_default_config", "ensure_workspace", "resolve_config_path"]
