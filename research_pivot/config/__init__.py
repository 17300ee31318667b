"""Unified configuration module.

Single source of truth for all configuration and settings.
"""

from .settings import (
    Settings,
    get_settings,
    KNOWN_PROVIDERS,
    DEFAULT_BYPASS_KEYWORDS,
)

__all__ = [
    "Settings",
    "get_settings",
    "KNOWN_PROVIDERS",
    "DEFAULT_BYPASS_KEYWORDS",
]
