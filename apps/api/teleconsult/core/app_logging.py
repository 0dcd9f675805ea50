"""Logging configuration helpers."""
from __future__ import annotations

import logging

LOGGER_NAME = "teleconsult"


def configure_logging(level: str = "INFO") -> None:
    """Configure package logging with a single stream handler."""

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())
    if logger.handlers:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s: %(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
