"""Configuration loading utilities."""

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from wabridge.config.schema import Config


class ConfigError(ValueError):
    """Configuration file is missing or invalid."""


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".wabridge" / "config.json"


def load_config(config_path: Path | None = None, require_phone: bool = True) -> Config:
    """
    Load configuration from file, then apply env-var overrides.

    Priority (highest → lowest):
        1. WABRIDGE_* environment variables
        2. config.json
        3. Built-in defaults
    """
    path = config_path or get_config_path()
    if not path.exists():
        raise ConfigError(f"{path} not found. Run `wabridge onboard` to create it.")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        config = Config.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e

    try:
        _apply_env_overrides(config)
    except (ValueError, ValidationError) as e:
        raise ConfigError(f"Invalid environment override: {e}") from e

    if require_phone and not config.phone:
        raise ConfigError("config.phone is required. Set your phone number (without +) in config.json")
    return config


def _apply_env_overrides(config: Config) -> None:
    """Apply flat WABRIDGE_* env vars on top of the loaded config."""
    if val := os.environ.get("WABRIDGE_PHONE"):
        config.phone = val
    if val := os.environ.get("WABRIDGE_CWD"):
        config.cwd = val
    if val := os.environ.get("WABRIDGE_TIMEOUT"):
        config.timeout = int(val)
    if val := os.environ.get("WABRIDGE_BRIDGE_URL"):
        config.transport.bridge_url = val


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Save configuration to file in camelCase form."""
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(by_alias=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def load_skill(config: Config, config_path: Path | None = None) -> str | None:
    """Read the skill file appended to the engine's system prompt, if configured."""
    if not config.skill:
        return None
    base = (config_path or get_config_path()).parent
    skill_path = (base / Path(config.skill).expanduser()).resolve()
    if not skill_path.exists():
        logger.warning(f"Skill file not found: {skill_path}")
        return None
    logger.info(f"📚 Loaded skill: {config.skill}")
    return skill_path.read_text(encoding="utf-8")
