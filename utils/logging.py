"""Bridge standard-library logging into loguru."""

from __future__ import annotations

import logging
import logging.config
from typing import Any, Dict

from loguru import logger


class InterceptHandler(logging.Handler):
    """Forward ``logging`` records (uvicorn, weasyprint) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


# setup_logging routine


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger using dictConfig."""
    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "handlers": {
            "loguru": {
                "()": InterceptHandler,
                "level": level,
            },
        },
        "root": {
            "level": level,
            "handlers": ["loguru"],
        },
        "loggers": {
            # weasyprint and fontTools are chatty at INFO
            "weasyprint": {"level": "WARNING"},
            "fontTools": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(config)
