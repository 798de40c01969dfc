"""Centralized logging configuration for the Study Portal application."""

from __future__ import annotations

import logging
import os
from logging import Logger
from pathlib import Path
from typing import Iterable, List


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_LEVEL_ENV = "STUDY_PORTAL_LOG_LEVEL"


def resolve_log_level(default: int = logging.INFO) -> int:
    """Return the level named by ``STUDY_PORTAL_LOG_LEVEL`` or *default*."""

    raw = (os.environ.get(LOG_LEVEL_ENV) or "").strip().upper()
    if not raw:
        return default
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def configure_logging(level: int | None = None, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger; without *handlers* a stream handler is attached."""

    logger = logging.getLogger()
    logger.setLevel(resolve_log_level() if level is None else level)

    if handlers is None:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(stream_handler)
    else:
        for handler in handlers:
            logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "study_portal.log"


def build_log_handlers(storage_root: Path) -> List[logging.Handler]:
    """Return the file and console handlers used by the CLI commands."""

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(get_log_file_path(storage_root), encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    return [file_handler, stream_handler]


__all__ = [
    "DEFAULT_LOG_FORMAT",
    "LOG_LEVEL_ENV",
    "build_log_handlers",
    "configure_logging",
    "get_log_file_path",
    "resolve_log_level",
]
