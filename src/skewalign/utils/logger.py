"""
SkewAlign - Logger Module

This module sets up logging for the package. Records are handed to a
queue and written by a listener thread, so page workers never block on
the output stream.
"""

import atexit
import logging
import logging.handlers
import queue

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_LOGGER_NAME = "skewalign"

_listener: logging.handlers.QueueListener | None = None


def setup_logger(
    log_level: int | None = None,
    log_format: str | None = None,
    logger_name: str | None = None,
    stream_handler: logging.Handler | None = None,
) -> logging.Logger:
    """Set up and configure the package logger.

    Calling this again replaces the previous listener.

    Args:
        log_level: Logging level to use (default: INFO)
        log_format: Logging format string (default: standard format)
        logger_name: Name for the logger (default: skewalign)
        stream_handler: Handler doing the actual writing (default: stderr)

    Returns:
        A configured Logger instance
    """
    global _listener

    log_level = DEFAULT_LOG_LEVEL if log_level is None else log_level
    log_format = log_format or DEFAULT_LOG_FORMAT
    logger_name = logger_name or DEFAULT_LOGGER_NAME

    shutdown_logger()

    target = stream_handler or logging.StreamHandler()
    target.setFormatter(logging.Formatter(log_format, datefmt="%H:%M:%S"))

    records: queue.SimpleQueue = queue.SimpleQueue()
    _listener = logging.handlers.QueueListener(records, target, respect_handler_level=True)
    _listener.start()

    logger = logging.getLogger(logger_name)
    for handler in list(logger.handlers):
        if isinstance(handler, logging.handlers.QueueHandler):
            logger.removeHandler(handler)
    logger.addHandler(logging.handlers.QueueHandler(records))
    logger.setLevel(log_level)
    logger.propagate = False
    return logger


def shutdown_logger() -> None:
    """Flush pending records and stop the listener thread."""
    global _listener
    if _listener is not None:
        _listener.stop()
        _listener = None


atexit.register(shutdown_logger)
