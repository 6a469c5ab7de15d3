"""
Logging configuration for the upi-bank service.

Rotating file logs under LOG_DIR (default ./logs):

    upi_bank.log   - everything under the ``upi_bank`` logger tree
    transfers.log  - transfer outcomes only (``upi_bank.core.engine``)

Warnings and above are also echoed to the console. PINs and request bodies
are never passed to these loggers.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from upi_bank import config

SERVICE_LOGGER = "upi_bank"
TRANSFER_LOGGER = "upi_bank.core.engine"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5


def _setup_file_logger(name: str, log_file: Path, level: int, console: bool = False) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # setup_logging() may run more than once (reloads, tests)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.WARNING)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)
    return logger


def setup_logging(log_dir: Optional[str] = None) -> None:
    """
    Configure the service and transfer loggers.
    """
    level = getattr(logging, config.LOG_LEVEL, logging.INFO)

    directory = Path(log_dir or config.LOG_DIR)
    directory.mkdir(parents=True, exist_ok=True)

    logging.getLogger().setLevel(level)

    _setup_file_logger(SERVICE_LOGGER, directory / "upi_bank.log", level, console=True)
    # Propagates to the service logger as well, so transfers appear in both files
    _setup_file_logger(TRANSFER_LOGGER, directory / "transfers.log", level)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if config.SQL_ECHO else logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
