"""Logging configuration for sensorlabel.

Every command writes to:
- ~/.config/sensorlabel/sensorlabel.log, at DEBUG, rotated at 5 MB with 2 backups
- stderr, warnings only (everything with --debug), so table and CSV output stay clean
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_DIR = Path.home() / ".config" / "sensorlabel"
LOG_FILE = LOG_DIR / "sensorlabel.log"
LOGGER_NAME = "sensorlabel"

_LOG_MAX_BYTES = 5 * 1024 * 1024
_LOG_BACKUP_COUNT = 2
_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(path),
        maxBytes=_LOG_MAX_BYTES,
        backupCount=_LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    return handler


def _stderr_handler(debug: bool) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    return handler


def reset_logging() -> None:
    """Detach and close every handler on the package logger."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(debug: bool = False, log_file: Path | None = None) -> None:
    """Route package logs to the rotating log file and stderr.

    Safe to call more than once per process; earlier handlers are replaced.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    reset_logging()
    logger.addHandler(_file_handler(Path(log_file) if log_file else LOG_FILE))
    logger.addHandler(_stderr_handler(debug))
