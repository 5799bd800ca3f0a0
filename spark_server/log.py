"""Logging setup for the hub process."""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"

APP_LOGGER = "spark_server"
VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Chatty libraries pinned at WARNING even when the app runs at DEBUG
QUIET_LOGGERS = ("bleak", "websockets")


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Configure stderr logging and return the application logger.

    Args:
        level: Level name for the ``spark_server`` logger

    Returns:
        The configured application logger
    """
    level_name = level.upper()
    fallback = level_name not in VALID_LEVELS
    if fallback:
        level_name = "INFO"

    logging.basicConfig(
        level=logging.WARNING,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        stream=sys.stderr,
        force=True,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    app_logger = logging.getLogger(APP_LOGGER)
    app_logger.setLevel(getattr(logging, level_name))

    if fallback:
        app_logger.warning("Unknown log level '%s', defaulting to INFO", level)
    return app_logger
