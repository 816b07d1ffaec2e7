"""
Logging configuration for ccvm.

Everything logs through the ``ccvm`` logger hierarchy. The console handler
writes to stderr at WARNING unless verbose mode or the environment asks for
more; a daily file under the configuration directory always captures DEBUG.

Environment:
    CCVM_DEBUG      1/true/yes forces DEBUG on the console
    CCVM_LOG_LEVEL  console level name (default WARNING)
    CCVM_LOG_FILE   explicit log file, or none/disabled to turn files off
"""

import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional, TextIO

import click

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_PREFIX = "ccvm_"
LOG_FILE_SUFFIX = ".log"

ENV_LOG_LEVEL = "CCVM_LOG_LEVEL"
ENV_DEBUG = "CCVM_DEBUG"
ENV_LOG_FILE = "CCVM_LOG_FILE"

ROOT_LOGGER_NAME = "ccvm"

LEVEL_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "magenta",
}

_LEVEL_NAMES = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def stream_supports_color(stream: TextIO) -> bool:
    """Whether ANSI colors should be written to stream."""
    if not hasattr(stream, "isatty") or not stream.isatty():
        return False
    # https://no-color.org/
    if os.environ.get("NO_COLOR"):
        return False
    return os.environ.get("TERM", "") != "dumb"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors whole console lines by level."""

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and stream_supports_color(sys.stderr)

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = LEVEL_COLORS.get(record.levelname)
        if self.use_colors and color:
            return click.style(text, fg=color)
        return text


def get_log_level_from_env() -> int:
    """
    Console log level requested by the environment.

    CCVM_DEBUG wins over CCVM_LOG_LEVEL. Unknown names fall back to WARNING.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    name = os.environ.get(ENV_LOG_LEVEL, "WARNING").upper()
    return _LEVEL_NAMES.get(name, logging.WARNING)


def log_file_name(day: Optional[datetime] = None) -> str:
    """Return the daily log file name, e.g. ccvm_20240120.log."""
    day = day or datetime.now()
    return f"{LOG_FILE_PREFIX}{day.strftime('%Y%m%d')}{LOG_FILE_SUFFIX}"


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Log file to write, or None if file logging is off.

    CCVM_LOG_FILE takes precedence over the daily file in log_dir.
    """
    log_file = os.environ.get(ENV_LOG_FILE)
    if log_file is not None:
        if log_file.lower() in ("none", "disabled", ""):
            return None
        return Path(log_file)

    if log_dir is None:
        return None
    return log_dir / log_file_name()


def _console_handler(level: int, verbose: bool, use_colors: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    fmt = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    if use_colors:
        handler.setFormatter(ColoredFormatter(fmt, DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(fmt, DATE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    return handler


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the ccvm logger. Safe to call more than once.

    Args:
        level: Console level; taken from the environment when None
        verbose: DEBUG on the console with file and line in each message
        log_dir: Directory for the daily log file
        log_file: Explicit log file, overriding log_dir
        enable_file_logging: Set False to log to the console only
        use_colors: Color console output when stderr is a terminal

    Returns:
        The ``ccvm`` logger.
    """
    if level is None:
        level = get_log_level_from_env()
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = False
    logger.setLevel(level)

    logger.addHandler(_console_handler(level, verbose, use_colors))

    file_path = None
    if enable_file_logging:
        file_path = log_file or get_log_file_path(log_dir)
    if file_path is not None:
        try:
            logger.addHandler(_file_handler(file_path))
        except OSError as e:
            logger.warning(f"Could not create log file {file_path}: {e}")
        else:
            # The file gets everything; the console handler still filters.
            logger.setLevel(logging.DEBUG)
            logger.debug(f"Log file: {file_path}")

    return logger


def cleanup_old_logs(log_dir: Optional[Path], keep_count: int = 10) -> int:
    """
    Delete all but the newest keep_count daily log files.

    Returns:
        Number of files deleted. keep_count <= 0 disables cleanup.
    """
    if keep_count <= 0 or log_dir is None or not log_dir.exists():
        return 0

    # Daily names sort chronologically
    logs = sorted(log_dir.glob(f"{LOG_FILE_PREFIX}*{LOG_FILE_SUFFIX}"), reverse=True)

    deleted = 0
    for old_log in logs[keep_count:]:
        try:
            old_log.unlink()
        except OSError as e:
            get_logger(__name__).debug(f"Could not delete {old_log}: {e}")
            continue
        deleted += 1
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Logger for name inside the ccvm hierarchy."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


__all__ = [
    "CONSOLE_FORMAT",
    "DATE_FORMAT",
    "VERBOSE_FORMAT",
    "ColoredFormatter",
    "cleanup_old_logs",
    "get_log_file_path",
    "get_log_level_from_env",
    "get_logger",
    "log_file_name",
    "setup_logging",
    "stream_supports_color",
]
