"""
Logging setup for the command-line entry points.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

LOGGER_NAME = "backup_utils"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def setup_logging(verbose: bool = False, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger.

    Warnings always reach stderr; INFO and DEBUG only with verbose. When
    log_file is set every record at DEBUG and above is written there.
    Calling this again replaces, never duplicates, the handlers it added.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    formatter = logging.Formatter(LOG_FORMAT)

    for handler in list(logger.handlers):
        if getattr(handler, "_backup_utils", False):
            logger.removeHandler(handler)
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    stream_handler.setFormatter(formatter)
    stream_handler._backup_utils = True
    logger.addHandler(stream_handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        file_handler._backup_utils = True
        logger.addHandler(file_handler)

    return logger
