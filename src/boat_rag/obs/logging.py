"""Logging setup for the service."""

from __future__ import annotations

import logging
import sys

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach one stream handler to the package logger; safe to call repeatedly."""
    logger = logging.getLogger("boat_rag")
    logger.setLevel(level.upper())
    if not any(getattr(handler, "_boat_rag", False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._boat_rag = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger
