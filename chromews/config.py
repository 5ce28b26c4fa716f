"""Configuration — CDP endpoint and timeouts.

Config lives in ~/.chromews/config.json (override the directory with
CHROMEWS_HOME). Environment variables win over the file, and explicit
arguments to Browser() win over both.

    {
      "cdp_url": "http://127.0.0.1:9222",
      "command_timeout": 30000,
      "navigation_timeout": 30000,
      "poll_interval": 100
    }

All durations are in milliseconds.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULTS: dict[str, Any] = {
    "cdp_url": "http://127.0.0.1:9222",
    "command_timeout": 30000,
    "navigation_timeout": 30000,
    "poll_interval": 100,
}

# env var → config key
ENV_OVERRIDES = {
    "CDP_URL": "cdp_url",
    "CHROMEWS_COMMAND_TIMEOUT": "command_timeout",
    "CHROMEWS_NAVIGATION_TIMEOUT": "navigation_timeout",
}


def config_dir() -> Path:
    return Path(os.environ.get("CHROMEWS_HOME") or Path.home() / ".chromews")


def config_file() -> Path:
    return config_dir() / "config.json"


@dataclass(frozen=True)
class Settings:
    """Resolved settings. Durations in milliseconds."""

    cdp_url: str = DEFAULTS["cdp_url"]
    command_timeout: int = DEFAULTS["command_timeout"]
    navigation_timeout: int = DEFAULTS["navigation_timeout"]
    poll_interval: int = DEFAULTS["poll_interval"]


def load_config() -> dict[str, Any]:
    """Load the config file. Returns {} if it doesn't exist."""
    path = config_file()
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: expected a JSON object", path)
        return {}
    return data


def save_config(config: dict[str, Any]) -> None:
    """Write the config file, creating the directory if needed."""
    path = config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2) + "\n")


def _coerce(key: str, value: Any) -> Any:
    if key == "cdp_url":
        return str(value).rstrip("/")
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-integer %s=%r", key, value)
        return DEFAULTS[key]
    return number if number > 0 else DEFAULTS[key]


def get_settings(**overrides: Any) -> Settings:
    """Merge defaults, config file, environment and explicit overrides."""
    merged = dict(DEFAULTS)
    file_cfg = load_config()
    merged.update({k: v for k, v in file_cfg.items() if k in DEFAULTS})
    for env, key in ENV_OVERRIDES.items():
        if os.environ.get(env):
            merged[key] = os.environ[env]
    merged.update({k: v for k, v in overrides.items() if k in DEFAULTS and v is not None})
    return Settings(**{k: _coerce(k, v) for k, v in merged.items()})
