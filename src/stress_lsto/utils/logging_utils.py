"""
Simple logging helper.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s: %(message)s"


def get_logger(name: str, level: str = "INFO", log_file: Optional[str | Path] = None) -> logging.Logger:
    """Create a logger with uniform format.

    Params:
        name: logger name, usually __name__ of the caller module.
        level: logging level string (e.g., 'DEBUG', 'INFO').
        log_file: optional run-scoped file that receives the same records as the console.

    Returns:
        Configured logging.Logger instance.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(handler)
    if log_file is not None:
        path = Path(log_file).resolve()
        path.parent.mkdir(parents=True, exist_ok=True)
        known = {getattr(h, "baseFilename", None) for h in logger.handlers}
        if str(path) not in known:
            file_handler = logging.FileHandler(path, mode="w", encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(_FORMAT))
            logger.addHandler(file_handler)
    return logger


def close_file_handlers(logger: logging.Logger) -> None:
    """Detach and close every file handler attached by `get_logger`."""
    for handler in list(logger.handlers):
        if isinstance(handler, logging.FileHandler):
            logger.removeHandler(handler)
            handler.close()
