"""
Logging configuration. One application logger with console output.
"""

import logging
import sys


def setup_logger(name: str = "schoolpool", level: str = "INFO") -> logging.Logger:
    """Create a configured logger with console output."""
    logger = logging.getLogger(name)

    if not logger.handlers:
        logger.setLevel(level.upper())

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level.upper())

        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def set_level(level: str) -> None:
    logger.setLevel(level.upper())
    for handler in logger.handlers:
        handler.setLevel(level.upper())


# Global logger instance
logger = setup_logger()
