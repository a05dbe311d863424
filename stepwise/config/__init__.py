"""
Configuration module exports.
"""

from stepwise.config.settings import ConfigManager, Settings, get_settings

__all__ = [
    "Settings",
    "ConfigManager",
    "get_settings",
]
