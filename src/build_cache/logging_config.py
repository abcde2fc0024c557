"""Logging configuration for build-cache.

The package logs under the "build_cache" logger and never installs handlers
on import. Hosts that want a session log file call setup_logging().
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Union

ROOT_LOGGER = "build_cache"
LOG_FILE_NAME = "build_cache.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def setup_logging(log_dir: Path, level: Union[int, str] = logging.INFO) -> logging.Logger:
    """Set up package logging to a size-rotated file.

    A log left over from an earlier session that already exceeds the size
    limit is rolled over before anything new is written.

    Args:
        log_dir: Directory to store log files
        level: Logging level name or number

    Returns:
        Configured package logger
    """
    level = _resolve_level(level)

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    file_handler = RotatingFileHandler(
        log_file,
        mode="a",
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    if log_file.stat().st_size >= MAX_LOG_BYTES:
        file_handler.doRollover()

    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.addHandler(file_handler)

    logger.info(f"Logging to {log_file}")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a specific module.

    Args:
        name: Module name (usually __name__)

    Returns:
        Logger nested under the package logger
    """
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
