"""
Settings loader for settings.yaml

Usage:
    from car_advisor.settings import settings

    model = settings.llm.model
    k1 = settings.scoring.emphasis.chat
"""

from pathlib import Path
from typing import Any, List

import yaml


SETTINGS_FILE = Path(__file__).parent / "settings.yaml"

# Defaults (used when a value is missing from YAML)
DEFAULTS = {
    "llm": {
        "model": "phi4",
        "base_url": "http://localhost:11434",
        "timeout": 60,
        "inactivity_timeout": 30,
        "temperature": 0.2,
    },
    "scoring": {
        # k1: emphasis on daily distance and usage, per delivery mode
        "emphasis": {
            "web": 1,
            "chat": 2,
        },
        "top_n": 3,
    },
    "chat": {
        "max_questions": 5,
    },
    "sessions": {
        "ttl_seconds": 3600,
    },
    "catalog": {
        "path": "",
    },
    "specs": {
        "path": "",
    },
    "logging": {
        "level": "INFO",
    },
}


class DotDict(dict):
    """Dict with attribute access: d.key instead of d['key']"""

    def __getattr__(self, key: str) -> Any:
        try:
            value = self[key]
            if isinstance(value, dict):
                return DotDict(value)
            return value
        except KeyError:
            raise AttributeError(f"Setting '{key}' not found")

    def __setattr__(self, key: str, value: Any) -> None:
        self[key] = value

    def get_nested(self, path: str, default: Any = None) -> Any:
        """Get a value by dotted path: 'llm.model'"""
        keys = path.split('.')
        value = self
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge of dicts (override wins)"""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(filepath: Path = None) -> DotDict:
    """
    Load settings from a YAML file.

    Priority:
    1. Values from the YAML file
    2. DEFAULTS

    Args:
        filepath: Settings file (settings.yaml next to this module by default)

    Returns:
        DotDict with settings
    """
    filepath = filepath or SETTINGS_FILE

    config = _deep_merge({}, DEFAULTS)

    if filepath.exists():
        with open(filepath, "r", encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        config = _deep_merge(config, yaml_config)

    return DotDict(config)


def validate_settings(settings: DotDict) -> List[str]:
    """
    Validate settings.

    Returns:
        List of errors (empty when everything is OK)
    """
    errors = []

    # LLM
    if not settings.llm.model:
        errors.append("llm.model is not set")
    if not settings.llm.base_url:
        errors.append("llm.base_url is not set")
    if settings.llm.timeout <= 0:
        errors.append("llm.timeout must be > 0")
    if settings.llm.inactivity_timeout <= 0:
        errors.append("llm.inactivity_timeout must be > 0")

    # Scoring
    for mode in ("web", "chat"):
        value = settings.scoring.emphasis.get(mode)
        if not isinstance(value, (int, float)) or value <= 0:
            errors.append(f"scoring.emphasis.{mode} must be a positive number")
    if settings.scoring.top_n < 1:
        errors.append("scoring.top_n must be >= 1")

    # Chat
    if settings.chat.max_questions < 0:
        errors.append("chat.max_questions must be >= 0")

    # Sessions
    if settings.sessions.ttl_seconds <= 0:
        errors.append("sessions.ttl_seconds must be > 0")

    return errors


# Global settings instance (lazy)
_settings = None


def get_settings() -> DotDict:
    """Get the global settings (singleton)"""
    global _settings
    if _settings is None:
        _settings = load_settings()
        errors = validate_settings(_settings)
        if errors:
            raise ValueError("Invalid settings: " + "; ".join(errors))
    return _settings


settings = get_settings()
