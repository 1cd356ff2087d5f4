"""
Logging setup for PM Mirror Bot.

Console output plus rotating per-level files:
- info.log: INFO and WARNING
- warn.log: WARNING only
- error.log: ERROR and above
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] %(levelname)s - %(message)s"
FILE_FORMAT = "[%(asctime)s] %(levelname)s - %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

NOISY_LOGGERS = ("httpx", "httpcore", "websockets")


class LevelRangeFilter(logging.Filter):
    """Pass records whose level lies in [low, high]."""

    def __init__(self, low: int, high: int):
        super().__init__()
        self.low = low
        self.high = high

    def filter(self, record: logging.LogRecord) -> bool:
        return self.low <= record.levelno <= self.high


def _file_handler(path: Path, low: int, high: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT)
    handler.setLevel(low)
    handler.addFilter(LevelRangeFilter(low, high))
    handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(level: str = "INFO", log_dir: str = "logs") -> logging.Logger:
    """
    Configure the root logger once for the process.

    Args:
        level: Console log level name
        log_dir: Directory for the rotating log files

    Returns:
        The package logger
    """
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)

    console = logging.StreamHandler()
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(console)
    root.addHandler(_file_handler(path / "info.log", logging.INFO, logging.WARNING))
    root.addHandler(_file_handler(path / "warn.log", logging.WARNING, logging.WARNING))
    root.addHandler(_file_handler(path / "error.log", logging.ERROR, logging.CRITICAL))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return logging.getLogger("pm_mirror")
