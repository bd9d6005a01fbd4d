"""
Logging for the ``prdsmith`` logger tree.

Log records go to stderr, coloured by level, so that ``ask --stream`` can
write generated text to stdout without interleaving. When ``log_file`` is
set, a second handler writes uncoloured records with the calling function
and line, which is what you want when tracing a retry or a dropped stream
after the fact.
"""

import logging
import sys
from pathlib import Path

from prdsmith.config.settings import Settings

LOGGER_NAME = "prdsmith"

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Colours the level name with ANSI escapes."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # The file handler formats the same record; colour a copy only
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = (
                f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
            )
        return super().format(record)


def setup_logging(settings: Settings) -> None:
    """
    Install the console (and optional file) handler on the ``prdsmith`` logger.

    Calling it again replaces the handlers instead of stacking them.

    Args:
        settings: Application settings (``log_level``, ``log_file``)
    """
    level = getattr(logging, settings.log_level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    # Records stay out of the root logger
    logger.propagate = False

    logger.debug(f"Logging initialized - Level: {settings.log_level}")
    if settings.log_file:
        logger.info(f"Logging to file: {settings.log_file}")


def get_logger(name: str) -> logging.Logger:
    """
    Logger for a module, placed under the ``prdsmith`` tree.

    Module ``__name__`` values inside the package are used as-is; any other
    name is nested beneath ``prdsmith``.
    """
    if name == LOGGER_NAME or name.startswith(f"{LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
