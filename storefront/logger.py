"""
Logging setup for the storefront service.

Every module logs through a child of the ``storefront`` logger so a single
handler (stdout) and a single level apply to the whole service.
"""
import logging
import os
import sys

ROOT_LOGGER_NAME = "storefront"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(ROOT_LOGGER_NAME)

if not logger.handlers:
    _handler = logging.StreamHandler(sys.stdout)
    _handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(_handler)

logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
# uvicorn configures the root logger too; avoid printing every line twice
logger.propagate = False


def configure_logging(level: str) -> None:
    """Apply the configured level to the service logger and its handlers."""
    level = level.upper()
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def get_logger(name: str = None) -> logging.Logger:
    """Return ``storefront.<name>``, or the service logger itself."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return logger
