"""Logging configuration for the forum application."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from flask import Flask

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(app: Flask) -> None:
    """Set log levels for the ``forum`` loggers and attach a file handler.

    Args:
        app: Application whose ``DEBUG`` and ``LOG_DIR`` settings are read.

    Debug mode logs at ``DEBUG`` so template render timings show up. When
    ``LOG_DIR`` is configured a :class:`~logging.handlers.RotatingFileHandler`
    writes ``forum.log`` there (10 MB per file, five backups).
    """

    level = logging.DEBUG if app.debug else logging.INFO
    forum_logger = logging.getLogger("forum")
    forum_logger.setLevel(level)
    app.logger.setLevel(level)

    if not logging.getLogger().handlers and not forum_logger.handlers:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        forum_logger.addHandler(stream_handler)

    log_dir = app.config.get("LOG_DIR")
    if not log_dir:
        return

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)
    log_file = str((log_path / "forum.log").resolve())
    if any(
        isinstance(handler, RotatingFileHandler) and handler.baseFilename == log_file
        for handler in forum_logger.handlers
    ):
        return

    file_handler = RotatingFileHandler(
        log_file, maxBytes=1024 * 1024 * 10, backupCount=5
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    forum_logger.addHandler(file_handler)
