"""
Second Brain Calendar Planner - Logging
Coloured console output plus a rotating planner.log.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler

# LOG_DIR overrides the default backend/logs directory
LOGS_DIR = os.getenv("LOG_DIR") or os.path.join(os.path.dirname(__file__), "logs")
os.makedirs(LOGS_DIR, exist_ok=True)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_LOG_BYTES = 5 * 1024 * 1024
LOG_BACKUPS = 5


class CustomFormatter(logging.Formatter):
    """Level-coloured console formatter; plain when colours are off."""

    grey = "\x1b[38;20m"
    blue = "\x1b[34;20m"
    yellow = "\x1b[33;20m"
    red = "\x1b[31;20m"
    bold_red = "\x1b[31;1m"
    reset = "\x1b[0m"
    format_str = LOG_FORMAT + " (%(filename)s:%(lineno)d)"

    COLOURS = {
        logging.DEBUG: grey,
        logging.INFO: blue,
        logging.WARNING: yellow,
        logging.ERROR: red,
        logging.CRITICAL: bold_red,
    }

    def __init__(self, use_colour: bool = True):
        super().__init__(datefmt=DATE_FORMAT)
        self.use_colour = use_colour

    def format(self, record):
        fmt = self.format_str
        if self.use_colour:
            fmt = self.COLOURS.get(record.levelno, "") + fmt + self.reset
        return logging.Formatter(fmt, datefmt=DATE_FORMAT).format(record)


def _level_from_env(default: int) -> int:
    """LOG_LEVEL as a name or number, else the default."""
    raw = os.getenv("LOG_LEVEL")
    if not raw:
        return default
    if raw.isdigit():
        return int(raw)
    resolved = logging.getLevelName(raw.upper())
    return resolved if isinstance(resolved, int) else default


def _colour_enabled() -> bool:
    return sys.stdout.isatty() and not os.getenv("NO_COLOR")


def setup_logger(name: str = "SecondBrain", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(_level_from_env(level))

    # Called once per import; keep handlers single
    if logger.hasHandlers():
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(CustomFormatter(use_colour=_colour_enabled()))
    logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        os.path.join(LOGS_DIR, "planner.log"),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUPS,
        encoding="utf-8"
    )
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(file_handler)

    return logger


# Global logger instance
logger = setup_logger()
