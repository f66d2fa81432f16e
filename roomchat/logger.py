# ============================================
#   roomchat — Central logger
#   Daily rotating file + console mirror in dev
# ============================================

import os
import logging
from logging.handlers import TimedRotatingFileHandler

from roomchat.config import IS_PROD, LOG_DIR, LOG_FILE

os.makedirs(LOG_DIR, exist_ok=True)

ROOT_LOGGER_NAME = os.getenv("ROOMCHAT_LOGGER_NAME", "roomchat")
LOG_LEVEL = os.getenv("ROOMCHAT_LOG_LEVEL", "INFO").upper()

# Mirror log lines on stderr (default: on in dev, off in prod)
LOG_TO_CONSOLE = (
    os.getenv("ROOMCHAT_LOG_CONSOLE", "false" if IS_PROD else "true")
    .lower()
    in ("1", "true", "yes", "on")
)

_FORMAT = "%(asctime)s [%(levelname)s] [%(name)s] %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _build_handlers():
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)

    file_handler = TimedRotatingFileHandler(
        LOG_FILE,
        when="midnight",
        backupCount=30,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    handlers = [file_handler]

    if LOG_TO_CONSOLE:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        handlers.append(console)

    return handlers


def _root_logger() -> logging.Logger:
    """
    Configure the roomchat logger the first time it is requested.
    Later calls return it untouched, so re-imports never stack handlers.
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    for handler in _build_handlers():
        logger.addHandler(handler)
    logger.propagate = False

    return logger


def get_logger(module_name: str) -> logging.Logger:
    """
    Child logger per module: get_logger("commands") → roomchat.commands
    """
    return _root_logger().getChild(module_name)


def log_info(module: str, message: str):
    get_logger(module).info(message)


def log_warning(module: str, message: str):
    get_logger(module).warning(message)


def log_error(module: str, message: str):
    get_logger(module).error(message)


def log_exception(module: str, message: str):
    """
    Log with traceback. Only meaningful inside an except block.
    """
    get_logger(module).exception(message)
