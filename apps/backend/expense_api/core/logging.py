from __future__ import annotations

import os
import sys

from loguru import logger

from .config import settings


def setup_logging() -> None:
    logger.remove()
    logger.add(sys.stdout, level=settings.LOG_LEVEL.upper())

    if settings.LOG_PATH:
        log_dir = os.path.dirname(settings.LOG_PATH)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        logger.add(settings.LOG_PATH, rotation="10 MB", level=settings.LOG_LEVEL.upper())
