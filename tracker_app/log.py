import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

# Root of the application's logger tree; connectors log under tracker.connectors.*
logger = logging.getLogger("tracker")

FILE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Attach a stdout handler and, when log_file is set, a rotating file handler.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than duplicated.
    """
    logger.setLevel(logging.getLevelName(level))
    for handler in list(logger.handlers):
        if getattr(handler, "_tracker_handler", False):
            logger.removeHandler(handler)
            handler.close()

    # Stream Handler (stdout)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter("%(message)s"))  # Keep stdout clean
    stream_handler._tracker_handler = True
    logger.addHandler(stream_handler)

    # File Handler
    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler._tracker_handler = True
        logger.addHandler(file_handler)

    return logger


def log(msg: str) -> None:
    """Log a message to console and file."""
    logger.info(msg)
