"""
Logging for the task tracker.

Every module logs through logging.getLogger(__name__); setup_logging()
attaches one stdout handler to the "taskboard" logger at startup.
"""
import logging
import sys
from taskboard.config import get_settings

settings = get_settings()

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Libraries that are too chatty at INFO for a request/response service
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx")


def get_logger(name: str) -> logging.Logger:
    """Get a configured logger instance"""
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)

    logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    return logger


def setup_logging() -> None:
    """Configure the package logger once at application startup.

    Module loggers are created with ``logging.getLogger(__name__)`` and
    propagate to the ``taskboard`` logger configured here.
    """
    get_logger("taskboard").propagate = False
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
