"""Console logging setup for scripts and services."""

from __future__ import annotations

import logging
import sys


def setup_console_logger(name: str = "token_swap_engine", level: str | int = "INFO") -> logging.Logger:
    """Attach one stdout handler to the named logger (idempotent)."""
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter("%(asctime)s | %(levelname)s | %(name)s | %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger
