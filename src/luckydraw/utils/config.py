"""
Configuration Management
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from luckydraw.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent.parent.parent / "config" / "luckydraw.conf"

DEFAULTS: Dict[str, Dict[str, Any]] = {
    "draw": {
        "cycle_length_days": 15,
        "ending_soon_hours": 48,
        "legacy_cycle_fallback": False,
        "order_code_max_attempts": 10,
    },
    "store": {
        "backend": "memory",
        "timeout": 10,
    },
    "payment": {
        "delay_seconds": 1.0,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 6080,
        "countdown_interval": 1.0,
    },
}

_ENV_SECTIONS = {
    "DRAW_": "draw",
    "STORE_": "store",
    "PAYMENT_": "payment",
    "SERVER_": "server",
    "APP_": "app",
}

# Conventional Supabase variable names map straight into the store section.
_ENV_ALIASES = {
    "SUPABASE_URL": ("store", "supabase_url"),
    "SUPABASE_KEY": ("store", "supabase_key"),
}


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """Load configuration from defaults, a JSON file and environment variables"""
    config: Dict[str, Any] = {section: dict(values) for section, values in DEFAULTS.items()}

    path = Path(config_file or os.getenv("LUCKYDRAW_CONFIG") or DEFAULT_CONFIG_FILE)
    if path.exists():
        try:
            with open(path, 'r') as f:
                file_config = json.load(f)
            for section, values in file_config.items():
                if isinstance(values, dict):
                    config.setdefault(section, {}).update(values)
                else:
                    config[section] = values
            logger.info(f"Loaded configuration from {path}")
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config file: {e}")
    else:
        logger.warning(f"Config file {path} not found. Will only use defaults and environment variables.")

    config = _apply_env_overrides(config)

    logger.debug(f"Configuration after applying environment overrides: {json.dumps(_redacted(config), indent=2)}")

    return config


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides to configuration"""
    for key, value in os.environ.items():
        if key in _ENV_ALIASES:
            section, name = _ENV_ALIASES[key]
            config.setdefault(section, {})[name] = value
            continue

        for prefix, section in _ENV_SECTIONS.items():
            if key.startswith(prefix):
                config.setdefault(section, {})[key[len(prefix):].lower()] = value
                break

    return config


def _redacted(config: Dict[str, Any]) -> Dict[str, Any]:
    result = {}
    for section, values in config.items():
        if isinstance(values, dict):
            result[section] = {
                k: ("***" if "key" in k or "secret" in k else v) for k, v in values.items()
            }
        else:
            result[section] = values
    return result


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


def as_bool(value: Any) -> bool:
    """Interpret config values that may arrive as strings from the environment."""
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
