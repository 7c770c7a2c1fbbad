"""
Logging configuration for the storefront SDK and console.
"""
import logging
import os
import threading
from datetime import datetime
from typing import Optional, Union

from rich.logging import RichHandler

from . import config

_logging_initialized = False
_logging_lock = threading.Lock()


def setup_logging(log_level: Union[int, str, None] = None, log_dir: Optional[str] = None, to_file: bool = True):
    """
    Set up logging once per process.

    Console output goes through rich; when ``to_file`` is set a plain-text
    copy of the run is written to ``log_dir``.

    Returns:
        logging.Logger: the configured root logger
    """
    global _logging_initialized

    with _logging_lock:
        if _logging_initialized:
            return logging.getLogger()

        level = log_level if log_level is not None else config.STORE_LOG_LEVEL
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.INFO

        logger = logging.getLogger()
        logger.setLevel(level)

        for handler in logger.handlers[:]:
            logger.removeHandler(handler)

        console_handler = RichHandler(rich_tracebacks=True, show_path=False)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter("%(name)s - %(message)s"))
        logger.addHandler(console_handler)

        if to_file:
            log_dir = log_dir or config.STORE_LOG_DIR
            os.makedirs(log_dir, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = os.path.join(log_dir, f"storefront_{timestamp}.log")

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
            logger.addHandler(file_handler)
            logger.info("Logging initialized. Log file: %s", log_file)

        _logging_initialized = True
        return logger


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
