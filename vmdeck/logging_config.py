"""Logging configuration for vmdeck."""

import logging
import logging.handlers
import sys
from pathlib import Path

import libvirt

from vmdeck.config import LOG_FILE

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(filename)s:%(lineno)d] %(message)s"
CONSOLE_FORMAT = "%(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(__name__)


class ColoredFormatter(logging.Formatter):
    """Console formatter that colours the level name."""

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        record.levelname = f"{self.COLORS.get(record.levelno, '')}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _libvirt_error_handler(ctx: object, err: tuple) -> None:
    """Route libvirt's default error printing into the log."""
    # err is (code, domain, message, level, str1, str2, str3, int1, int2)
    logger.debug("libvirt: %s", err[2] if len(err) > 2 else err)


def setup_logging(
    level: int = logging.INFO,
    log_file: Path | None = LOG_FILE,
    console: bool = False,
) -> None:
    """Configure the root logger.

    Args:
        level: Level for the console handler; the file always gets DEBUG.
        log_file: Rotating log file, or None to disable file logging.
        console: Also log to stderr. Must stay off while the full-screen UI runs.
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.handlers.clear()

    if console:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(level)
        if sys.stderr.isatty():
            handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT))
        else:
            handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
        root.addHandler(handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(file_handler)

    if not root.handlers:
        root.addHandler(logging.NullHandler())

    libvirt.registerErrorHandler(_libvirt_error_handler, None)
