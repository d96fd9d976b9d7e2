# core/logging_config.py
"""
Logging setup shared by scripts and background workers.
"""
import logging
import sys
from typing import Optional

from config import Config

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: Optional[str] = None, logfile: Optional[str] = None) -> None:
    """
    Configure root logger.

    Args:
        level: Log level name; defaults to Config.LOG_LEVEL
        logfile: Optional file to mirror stdout into
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if logfile:
        handlers.append(logging.FileHandler(logfile))

    logging.basicConfig(
        level=level or Config.get(Config.LOG_LEVEL, "INFO"),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True
    )

    # Suppress noisy loggers
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('apscheduler').setLevel(logging.WARNING)
