"""
Centralized logging configuration for the WaxRadio client core.
"""
import logging
import sys
from typing import Optional

LOGGER_NAMESPACE = "waxradio"


def get_debug_mode() -> bool:
    """Get debug mode from settings."""
    from waxradio.config import get_settings
    return get_settings().debug


class ColoredFormatter(logging.Formatter):
    """Custom formatter with color coding for different log levels."""

    # Color codes
    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
        'ENDC': '\033[0m',      # End color
    }

    def format(self, record):
        # Color a copy so other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['ENDC']}"

        return super().format(record)


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    enable_colors: bool = True
) -> logging.Logger:
    """
    Set up the ``waxradio`` logger hierarchy.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
            Defaults to DEBUG in debug mode, INFO otherwise.
        log_file: Optional file path to write logs to
        enable_colors: Whether to enable colored console output

    Returns:
        Configured root logger of the namespace
    """
    if level is None:
        level = "DEBUG" if get_debug_mode() else "INFO"

    logger = logging.getLogger(LOGGER_NAMESPACE)
    logger.setLevel(getattr(logging, level.upper()))

    # Clear existing handlers
    logger.handlers.clear()

    fmt = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    console_formatter = ColoredFormatter(fmt) if enable_colors else logging.Formatter(fmt)

    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a specific module."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


# Initialize main logger
main_logger = setup_logging()
