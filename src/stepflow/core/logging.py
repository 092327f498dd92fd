"""Logging setup for the ``stepflow`` logger tree."""

from __future__ import annotations

import logging

LOGGER_NAME = "stepflow"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a stream handler to the root ``stepflow`` logger once.

    Module loggers created with ``logging.getLogger(__name__)`` propagate here.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    return logger
