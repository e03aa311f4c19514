"""Logging setup for the service."""
import logging
import sys

from src.core.config import settings

LOG_FORMAT = "%(asctime)s [%(process)d:%(threadName)s] [%(name)s] %(levelname)s - %(message)s"


def setup_logging(log_level: str | None = None) -> logging.Logger:
    """Configure the root logger with a single stdout handler."""
    level = (log_level or settings.LOG_LEVEL).upper()

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(console_handler)

    return logger
