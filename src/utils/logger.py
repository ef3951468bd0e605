"""
logger.py

Configures the application-wide logger with Python's standard `logging` module.

`get_logger` returns a single logger named 'interview'. The first call attaches
two handlers:

1.  Stream Handler (stdout), `DEBUG` and above, short format.
2.  File Handler writing `config["paths"]["logs_dir"]/interview.log`
    (defaults to `./logs/interview.log`), `INFO` and above, detailed format.
    File logging is skipped with an error message if the directory cannot be
    created.

Library modules use `logging.getLogger(__name__)`; Celery tasks and the
process runners call `get_logger()`.
"""

import logging
import sys
from pathlib import Path

from src.config import config

_logger_instance = None
_DEFAULT_LOG_DIR = "./logs"
_DEFAULT_LOG_FILENAME = "interview.log"
_APP_LOGGER_NAME = "interview"


def _setup_logger() -> logging.Logger:
    """
    Configure and return the singleton logger instance.

    Called by `get_logger`; performs the setup only once.
    """
    global _logger_instance
    if _logger_instance:
        return _logger_instance

    logger = logging.getLogger(_APP_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    if logger.hasHandlers():
        logger.handlers.clear()

    file_formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d - %(message)s"
    )
    console_formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(message)s", datefmt="%H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    log_dir_path_str = (config.get("paths") or {}).get("logs_dir", _DEFAULT_LOG_DIR)
    try:
        log_dir = Path(log_dir_path_str)
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_dir / _DEFAULT_LOG_FILENAME, encoding="utf-8")
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        logger.error(f"Failed to create log directory or file at '{log_dir_path_str}': {e}. File logging disabled.")

    _logger_instance = logger
    return _logger_instance


def get_logger() -> logging.Logger:
    """
    Retrieve the application's configured logger instance.

    Returns:
        logging.Logger: The application's configured logger instance.
    """
    return _setup_logger()
