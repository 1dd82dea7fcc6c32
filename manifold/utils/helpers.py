"""Small filesystem and logging helpers."""

from __future__ import annotations

import sys
import time
from pathlib import Path

from loguru import logger

_DATA_ROOT = Path.home() / ".manifold"


def ensure_dir(path: Path) -> Path:
    """Create ``path`` (and parents) if needed and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_data_path() -> Path:
    """Return ``~/.manifold``, creating it on first use."""
    return ensure_dir(_DATA_ROOT)


def now_ms() -> int:
    return int(time.time() * 1000)


def configure_logging(level: str = "INFO", log_file: str | Path | None = None) -> None:
    """Route loguru output to stderr and, optionally, a rotating debug log."""
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    if log_file:
        target = Path(log_file).expanduser()
        ensure_dir(target.parent)
        logger.add(target, level="DEBUG", rotation="5 MB", retention=3, enqueue=True)
