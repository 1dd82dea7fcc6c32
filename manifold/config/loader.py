"""Load and save the manifold JSON config file."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from manifold.config.schema import Config


def get_config_path() -> Path:
    """Return the default config file location."""
    return Path.home() / ".manifold" / "config.json"


def load_config(path: Path | None = None) -> Config:
    """Load config from disk, falling back to defaults.

    Environment variables (``MANIFOLD_*``) fill in whatever the file
    leaves unset, through pydantic-settings.
    """
    config_path = path or get_config_path()
    if not config_path.exists():
        return Config()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(f"[config] Failed to read {config_path}: {exc}; using defaults")
        return Config()
    if not isinstance(data, dict):
        logger.warning(f"[config] {config_path} is not a JSON object; using defaults")
        return Config()
    try:
        return Config(**data)
    except ValidationError as exc:
        logger.warning(f"[config] Invalid config in {config_path}: {exc}; using defaults")
        return Config()


def save_config(config: Config, path: Path | None = None) -> Path:
    """Write config to disk and return the path written."""
    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(
        json.dumps(config.model_dump(), ensure_ascii=False, indent=2),
        encoding="utf-8",
    )
    return config_path
