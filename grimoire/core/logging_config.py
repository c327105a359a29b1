"""Logging setup for the ``grimoire`` logger hierarchy."""

from __future__ import annotations

import logging

from grimoire.core.config import get_settings

__all__ = ["configure_logging", "TRACE_LOGGER"]

# Rule lines evaluated in chatty mode are logged here.
TRACE_LOGGER = "grimoire.trace"


def configure_logging(
    level: int | str | None = None,
    *,
    formatter: logging.Formatter | None = None,
) -> logging.Logger:
    """Attach a stream handler to the ``grimoire`` logger and return it.

    Calling this again replaces the handler installed by a previous call instead of
    stacking a second one. ``level`` defaults to ``Settings.log_level``.
    """

    if level is None:
        level = get_settings().log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    logger = logging.getLogger("grimoire")
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_grimoire_handler", False):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.StreamHandler()
    handler._grimoire_handler = True  # type: ignore[attr-defined]
    if formatter is None:
        formatter = logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    return logger
