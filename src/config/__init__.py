"""
Configuration for merged table synchronization.

Usage:
    from src.config import load_settings

    settings = load_settings("sync.yaml", base_id="appXXXXXXXXXXXXXX")
"""

from src.config.settings import SyncSettings, load_settings, load_yaml_settings, resolve_credentials

__all__ = [
    "SyncSettings",
    "load_settings",
    "load_yaml_settings",
    "resolve_credentials",
]
