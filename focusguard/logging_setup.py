from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .paths import log_file_path

LOGGER_NAME = "focusguard"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logger(
    log_file: Path | None = None,
    level: int = logging.INFO,
    console: bool = False,
) -> logging.Logger:
    target = Path(log_file) if log_file is not None else log_file_path()
    target.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not logger.handlers:
        handler = RotatingFileHandler(
            target,
            maxBytes=1_000_000,
            backupCount=3,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

        if console:
            stream = logging.StreamHandler()
            stream.setFormatter(logging.Formatter("%(levelname)s | %(message)s"))
            logger.addHandler(stream)

    return logger
