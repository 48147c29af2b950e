"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from raffle_sync.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("config") / "raffle.conf"

# Environment prefix -> config section
_ENV_SECTIONS = {
    "BLOCKCHAIN_": "blockchain",
    "SYNC_": "sync",
    "SERVER_": "server",
    "APP_": "app",
}


def load_config(config_file: Optional[str] = None, *, use_dotenv: bool = True) -> Dict[str, Any]:
    """Load configuration from a JSON file and environment variables"""
    if use_dotenv:
        _load_dotenv()

    config: Dict[str, Any] = {}

    path = Path(config_file or os.getenv("RAFFLE_CONFIG", "") or DEFAULT_CONFIG_FILE)
    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                config.update(json.load(f))
            logger.info("Loaded configuration from %s", path)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error loading config file %s: %s", path, e)
    else:
        logger.warning("Config file %s not found. Will only use environment variables.", path)

    config = _apply_env_overrides(config)
    logger.debug("Configuration after applying environment overrides: %s", json.dumps(config, indent=2))
    return config


def _load_dotenv() -> None:
    from dotenv import load_dotenv

    load_dotenv()


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        for prefix, section in _ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def save_config(config: Dict[str, Any], config_file: Optional[str] = None) -> None:
    """Save configuration to file"""
    path = Path(config_file) if config_file else DEFAULT_CONFIG_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=2)
        logger.info("Configuration saved to %s", path)
    except OSError as e:
        logger.error("Error saving configuration: %s", e)


def get_config_value(config: Dict[str, Any], key_path: str, default=None):
    """Get configuration value by dot-separated key path"""
    keys = key_path.split('.')
    value = config

    try:
        for key in keys:
            value = value[key]
        return value
    except (KeyError, TypeError):
        return default
