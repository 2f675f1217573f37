import logging
import os
import sys
from logging.handlers import RotatingFileHandler

DEFAULT_LOG_FILE = "teleop.log"


def setup_logger(name: str, log_file: str = DEFAULT_LOG_FILE, level: str = "INFO") -> logging.Logger:
    """
    Setup a logger with console and file handlers.

    Args:
        name: Name of the logger (usually __name__)
        log_file: Path to the log file (empty string disables file logging)
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    # Check if handlers already exist to avoid duplicates
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = RotatingFileHandler(
                log_file, maxBytes=10*1024*1024, backupCount=5, delay=True
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"Failed to setup file logging to {log_file}: {e}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with default configuration."""
    return setup_logger(
        name,
        log_file=os.getenv("TELEOP_LOG_FILE", DEFAULT_LOG_FILE),
        level=os.getenv("LOG_LEVEL", "INFO"),
    )


def set_package_level(level: str, package: str = "handteleop") -> int:
    """
    Apply ``level`` to the package logger and every logger already created
    under it. Returns the numeric level applied.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    prefix = package + "."
    logging.getLogger(package).setLevel(log_level)
    for name, existing in list(logging.root.manager.loggerDict.items()):
        if name.startswith(prefix) and isinstance(existing, logging.Logger):
            existing.setLevel(log_level)
    return log_level
