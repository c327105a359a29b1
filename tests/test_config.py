"""
Tests for settings and logging setup.
"""

import logging

from grimoire.core import configure_logging, get_settings
from grimoire.core.config import Settings


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self):
        """Test the documented defaults."""
        settings = Settings()
        assert settings.chatty is False
        assert settings.emit_comments is False
        assert settings.swapped_suffix == "__Swapped"
        assert settings.max_use_depth == 32
        assert settings.log_level == "WARNING"

    def test_environment_overrides(self, monkeypatch):
        """Test GRIMOIRE_* variables override defaults."""
        monkeypatch.setenv("GRIMOIRE_MAX_USE_DEPTH", "4")
        monkeypatch.setenv("GRIMOIRE_EMIT_COMMENTS", "true")
        settings = Settings()
        assert settings.max_use_depth == 4
        assert settings.emit_comments is True

    def test_get_settings_is_cached(self):
        """Test get_settings returns one shared instance."""
        assert get_settings() is get_settings()


class TestConfigureLogging:
    """Test logging setup."""

    def test_installs_one_handler(self):
        """Test repeated calls replace rather than stack handlers."""
        logger = configure_logging("DEBUG")
        configure_logging("INFO")
        try:
            ours = [h for h in logger.handlers if getattr(h, "_grimoire_handler", False)]
            assert len(ours) == 1
            assert logger.level == logging.INFO
        finally:
            for handler in list(logger.handlers):
                if getattr(handler, "_grimoire_handler", False):
                    logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)

    def test_level_from_settings(self, monkeypatch):
        """Test the level defaults to Settings.log_level."""
        monkeypatch.setenv("GRIMOIRE_LOG_LEVEL", "error")
        get_settings.cache_clear()
        logger = configure_logging()
        try:
            assert logger.level == logging.ERROR
        finally:
            for handler in list(logger.handlers):
                if getattr(handler, "_grimoire_handler", False):
                    logger.removeHandler(handler)
            logger.setLevel(logging.NOTSET)
