from __future__ import annotations

import logging
import os

LOG_LEVEL_ENV = "PYCXI_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def default_level() -> str:
    return os.environ.get(LOG_LEVEL_ENV, "WARNING")


def setup_logging(level: str | None = None) -> None:
    lvl = getattr(logging, (level or default_level()).upper(), logging.WARNING)
    logging.basicConfig(level=lvl, format=LOG_FORMAT)


def get_logger(logger: logging.Logger | None = None) -> logging.Logger:
    """Return ``logger``, or the package logger (silent unless configured)."""
    return logger if logger is not None else logging.getLogger("pycxi")
