"""Configuration module for manifold."""

from manifold.config.loader import get_config_path, load_config, save_config
from manifold.config.schema import Config

__all__ = ["Config", "get_config_path", "load_config", "save_config"]
