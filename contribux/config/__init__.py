"""Configuration package."""

from contribux.config.settings import Settings, settings

__all__ = [
    "Settings",
    "settings",
]
