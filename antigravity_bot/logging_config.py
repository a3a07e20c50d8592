import logging
import os
import sys

_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
_LOG_FILE = os.getenv("LOG_FILE", "")
_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# httpx logs every request at INFO, websockets every frame at DEBUG
_NOISY_LIBRARIES = ("httpx", "httpcore", "websockets")


def setup_logger(name: str) -> logging.Logger:
    """Return the component logger, attaching handlers only on first use."""
    logger = logging.getLogger(f"antigravity.{name}")
    if logger.handlers:
        return logger

    logger.setLevel(_LOG_LEVEL)
    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    stream = logging.StreamHandler(sys.stdout)
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    if _LOG_FILE:
        file_handler = logging.FileHandler(_LOG_FILE, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    for lib in _NOISY_LIBRARIES:
        logging.getLogger(lib).setLevel(logging.WARNING)

    return logger
