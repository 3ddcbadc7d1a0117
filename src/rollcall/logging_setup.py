# src/rollcall/logging_setup.py

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FILE_NAME = "rollcall.log"
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 5

# Third-party loggers and the most they may emit into the file.
_LIBRARY_LEVELS = {
    "nio": logging.INFO,
    "nio.crypto": logging.WARNING,
    "aiohttp": logging.WARNING,
    "peewee": logging.WARNING,
}


class _ConsoleNoiseFilter(logging.Filter):
    """
    Console shows rollcall's own lifecycle (windows opened/closed, recovery,
    errors). The Matrix gateway and every third-party library only reach the
    console at WARNING/ERROR; the log file still gets all of it.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("rollcall."):
            if name.startswith("rollcall.connectors.matrix_"):
                return record.levelno >= logging.WARNING
            return True

        if name == "py.warnings":
            return record.levelno >= logging.ERROR

        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/rollcall",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Install the console + rotating file handlers on the root logger.

    Call once from the entrypoint, before anything logs. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    # The bot runs for weeks; keep the file bounded.
    file_handler = RotatingFileHandler(
        str(log_file),
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(max(level, file_level))

    logging.captureWarnings(True)
    return log_file
