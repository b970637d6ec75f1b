"""
Config loader for bedrockchat.
Reads config.yaml once at startup. All other modules import from here.
${ENV_VAR} references are resolved against the environment (and .env).
"""

import os
import re
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()

_CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

_config: dict | None = None

DEFAULTS: dict = {
    "transport": {
        "url": "http://localhost:8000",
        "timeout": 120,
        "max_retries": 2,
        "backoff_base": 1.5,
        "backoff_max": 10.0,
    },
    "chat": {
        "history_char_limit": 50000,
        "title_model": "anthropic.claude-3-haiku-20240307-v1:0",
        "state_wait_attempts": 10,
        "state_wait_interval": 0.1,
        "max_tokens": 4096,
    },
    "images": {
        "directory": "~/Amazon Bedrock Client",
        "served_url": "http://localhost:8080",
    },
    "settings": {"path": "./data/runtime_settings.yaml"},
    "storage": {"sqlite_path": "./data/conversations.db", "persist_conversations": True},
    "wiretap": {"enabled": False, "path": "./data/wire.jsonl"},
    "logging": {"level": "INFO", "file": None},
}


def _resolve_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} patterns with actual environment variable values."""
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, "")
    return re.sub(r"\$\{(\w+)\}", replacer, value)


def _walk_and_resolve(obj):
    """Recursively resolve env vars in all string values."""
    if isinstance(obj, dict):
        return {k: _walk_and_resolve(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_walk_and_resolve(v) for v in obj]
    elif isinstance(obj, str):
        return _resolve_env_vars(obj)
    return obj


def _merge_defaults(raw: dict) -> dict:
    """Fill missing sections/keys from DEFAULTS (one level deep)."""
    merged = {}
    for section, defaults in DEFAULTS.items():
        merged[section] = {**defaults, **(raw.get(section) or {})}
    for section, value in raw.items():
        merged.setdefault(section, value)
    return merged


def load_config(path: Path | None = None) -> dict:
    """Load and cache config from YAML file."""
    global _config
    if _config is not None and path is None:
        return _config

    config_path = Path(path) if path else _CONFIG_PATH
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    _config = _merge_defaults(_walk_and_resolve(raw))
    return _config


def get_config() -> dict:
    """Return cached config, loading if necessary."""
    if _config is None:
        return load_config()
    return _config


def reset_config():
    """Drop the cached config (tests, reloads)."""
    global _config
    _config = None
