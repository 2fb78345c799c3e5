"""Logging configuration: loguru sinks plus the stdlib root logger."""

import logging
import sys
from pathlib import Path

from loguru import logger

from tradeledger.config import Settings


def configure_logging(settings: Settings, name: str = "tradeledger"):
    """Send loguru to stderr and a daily-rotated file; set the stdlib level.

    Pipeline and storage modules log through ``logging.getLogger(__name__)``;
    services, the app and scripts use loguru directly.
    """
    level = settings.log_level.upper()

    logger.remove()
    logger.add(sys.stderr, level=level)
    if settings.log_dir:
        Path(settings.log_dir).mkdir(parents=True, exist_ok=True)
        logger.add(
            f"{settings.log_dir}/{name}_{{time}}.log",
            rotation="1 day",
            retention="7 days",
            level=level,
        )

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
