"""Logging configuration for the application."""
import logging
import sys

ROOT_LOGGER = "library_app"


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the package logger with a single stdout handler.

    Calling this again replaces the handler instead of stacking a second one.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
            datefmt="%H:%M:%S",
        )
    )
    logger.addHandler(console_handler)
    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child of the package logger."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
