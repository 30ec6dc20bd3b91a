"""
Configuration module exports.
"""

from fixloop.config.settings import (
    ConfigManager,
    Settings,
    get_config,
    get_settings,
    load_config_file,
)

__all__ = ["Settings", "ConfigManager", "get_settings", "get_config", "load_config_file"]
