"""
Logging for the rollout controller: console, rotating main log and a
separate errors.log that collects alerts and rollbacks
"""
import logging
import sys
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import List, Optional
from config import settings

CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

ERROR_LOG_FILE = "errors.log"


def _rotating_handler(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _build_handlers(log_file: str, log_level: int) -> List[logging.Handler]:
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))

    return [
        console_handler,
        _rotating_handler(log_dir / log_file, logging.DEBUG),
        _rotating_handler(log_dir / ERROR_LOG_FILE, logging.ERROR),
    ]


def get_logger(name: str, log_file: Optional[str] = None) -> logging.Logger:
    """
    Get a configured module logger

    Handlers are attached once per logger name; later calls return the
    same logger. Alerts logged at error level (and every rollback) also
    land in errors.log.
    """
    logger = logging.getLogger(name)

    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logger.setLevel(log_level)

    if logger.handlers:
        return logger

    for handler in _build_handlers(log_file or settings.log_file, log_level):
        logger.addHandler(handler)

    logger.propagate = False

    return logger


def configure_root_logger(level: int = logging.WARNING):
    """
    Route third-party loggers (apscheduler) to stdout

    Called when the rollout scheduler starts; importing this module does
    not touch the root logger.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
        root_logger.addHandler(handler)
