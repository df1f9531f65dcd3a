"""Loguru sink configuration shared by the whole application."""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path

from loguru import logger

from utils.logging import setup_logging

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_DIR = Path(os.getenv("LOG_DIR", Path(__file__).resolve().parent / "logs"))
LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {extra[module]} | {message}"
)

_lock = threading.Lock()


def _configure(level: str) -> None:
    logger.remove()
    logger.configure(extra={"module": "-"})
    logger.add(sys.stderr, level=level, format=LOG_FORMAT)
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        logger.add(
            LOG_DIR / "app.log",
            level=level,
            format=LOG_FORMAT,
            rotation="1 MB",
            retention=5,
            enqueue=True,
        )
    except OSError as exc:
        logger.warning("File logging disabled: {}", exc)
    setup_logging(level)


# set_log_level routine
def set_log_level(level: str) -> None:
    """Reconfigure all sinks at ``level``; safe to call from any thread."""
    with _lock:
        _configure(level.upper())


set_log_level(LOG_LEVEL)
