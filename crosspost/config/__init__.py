"""Configuration models and file I/O."""

from crosspost.config.loader import get_config_path, load_config, save_config
from crosspost.config.schema import CrosspostConfig

__all__ = ["CrosspostConfig", "get_config_path", "load_config", "save_config"]
