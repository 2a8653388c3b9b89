"""Logging infrastructure for the advisor pipeline.

Console verbosity follows ``ADVISOR_LOG_LEVEL`` (default INFO); the log file
always records DEBUG detail so per-article classifier output can be audited.
"""

import logging
import os
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(module)s.%(funcName)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(
    name: str = "advisor",
    log_file: Optional[str] = None,
    level: Optional[str] = None,
) -> logging.Logger:
    """
    Configure and return the advisor logger (file + console handlers).

    Args:
        name (str): The name of the logger.
        log_file (Optional[str]): Log file path; defaults to ``ADVISOR_LOG_FILE``
            or ``output/advisor.log``.
        level (Optional[str]): Console level name; defaults to ``ADVISOR_LOG_LEVEL`` or INFO.

    Returns:
        logging.Logger: The configured logger instance.
    """
    log_path = Path(log_file or os.getenv("ADVISOR_LOG_FILE", "output/advisor.log"))
    console_level = logging.getLevelName((level or os.getenv("ADVISOR_LOG_LEVEL", "INFO")).upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO

    logger = logging.getLogger(name)

    # Setup may run once per import path; handlers are attached only once
    if logger.hasHandlers():
        return logger

    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    return logger


# Shared logger instance used across stages
logger = setup_logger()
