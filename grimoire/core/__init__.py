"""Core configuration and logging for grimoire."""

from grimoire.core.config import Settings, get_settings
from grimoire.core.logging_config import configure_logging

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
]
