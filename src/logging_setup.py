"""Process-wide logging: console plus an optional rotating log file."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path

from config import clean_env_value, parse_int

LOG_FORMAT = "%(asctime)s %(levelname)s:%(name)s:%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DIR = "logs"
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_LOG_BACKUP_COUNT = 5


def _resolve_level() -> int:
    level_name = (clean_env_value(os.getenv("LOG_LEVEL")) or DEFAULT_LOG_LEVEL).upper()
    level = logging.getLevelName(level_name)
    return level if isinstance(level, int) else logging.INFO


def _rotating_file_handler(service_name: str) -> RotatingFileHandler:
    """Rotating handler under LOG_DIR; OSError when the directory is unusable."""
    log_dir = Path(clean_env_value(os.getenv("LOG_DIR")) or DEFAULT_LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_dir / (clean_env_value(os.getenv("LOG_FILE_NAME")) or f"{service_name}.log"),
        maxBytes=parse_int(os.getenv("LOG_MAX_BYTES"), DEFAULT_LOG_MAX_BYTES),
        backupCount=parse_int(os.getenv("LOG_BACKUP_COUNT"), DEFAULT_LOG_BACKUP_COUNT),
        encoding="utf-8",
    )


def configure_logging(service_name: str) -> None:
    """Route the root logger to stderr and `<LOG_DIR>/<service_name>.log`.

    Falls back to console-only output when the log directory cannot be
    created or opened.
    """
    level = _resolve_level()
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    file_error: OSError | None = None
    try:
        handlers.append(_rotating_file_handler(service_name))
    except OSError as error:
        file_error = error

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level)
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    if file_error is not None:
        logging.getLogger(__name__).warning("File logging disabled: %s", file_error)

    # aiohttp access lines only at WARNING and above.
    logging.getLogger("aiohttp.access").setLevel(max(level, logging.WARNING))
