# src/kpdev/logging_setup.py
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from kpdev.config import LoggingConfig


def setup_logging(log_settings: Optional[LoggingConfig] = None, verbose: bool = False):
    """
    Configures the root logger from a LoggingConfig.

    `verbose` forces DEBUG regardless of the configured level.
    """
    if log_settings is None:
        log_settings = LoggingConfig()

    level = "DEBUG" if verbose else log_settings.level.upper()

    # Get the root logger
    logger = logging.getLogger()
    logger.setLevel(level)

    # Clear existing handlers
    if logger.hasHandlers():
        logger.handlers.clear()

    formatter = logging.Formatter(log_settings.format)

    # 1. Console Handler (StreamHandler)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # 2. File Handler (RotatingFileHandler)
    if log_settings.log_to_file:
        log_file_path = Path(log_settings.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file_path,
            maxBytes=log_settings.rotation_size_mb * 1024 * 1024,  # in bytes
            backupCount=log_settings.rotation_backup_count,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    logger.debug("Logging configured.")
