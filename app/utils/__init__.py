"""
Shared helpers.
"""
import logging

from app.core import config


_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: str) -> logging.Logger:
    """
    Get a module logger.

    The top-level package logger (``app``, ``scripts``, ...) gets a single
    stream handler the first time one of its modules asks for a logger;
    module loggers propagate to it.
    """
    top = logging.getLogger(name.split(".", 1)[0])
    if not top.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        top.addHandler(handler)
        top.setLevel(config.LOG_LEVEL)
    return logging.getLogger(name)
