"""Configuration module for wabridge."""

from wabridge.config.loader import ConfigError, get_config_path, load_config, load_skill
from wabridge.config.schema import Config

__all__ = ["Config", "ConfigError", "load_config", "load_skill", "get_config_path"]
