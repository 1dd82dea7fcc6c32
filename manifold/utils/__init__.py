"""Utility functions for manifold."""

from manifold.utils.helpers import configure_logging, ensure_dir, get_data_path, now_ms

__all__ = ["configure_logging", "ensure_dir", "get_data_path", "now_ms"]
