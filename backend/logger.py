"""
Logging setup for the focal backend.
"""

import logging
import sys


def setup_logging(level: str = "INFO") -> logging.Logger:
    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    logger = logging.getLogger("focal")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not logger.handlers:
        logger.addHandler(handler)

    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logger
