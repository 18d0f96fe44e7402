"""JSON logging for the PCN tracker."""
from __future__ import annotations

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

SERVICE_NAME = "pcn-tracker"

# Libraries that log every request or job run at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default", "apscheduler.scheduler")


def setup_logging(level: str = "INFO") -> None:
    """Send every record to stderr as one JSON object.

    Call sites attach context with ``extra={...}``; those keys become
    top-level fields next to ``service``, ``level`` and ``logger``.
    """

    root_logger = logging.getLogger()
    # Drop handlers installed by a previous call (reload, tests).
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level.upper())

    handler = logging.StreamHandler()
    formatter = jsonlogger.JsonFormatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        static_fields={"service": SERVICE_NAME},
    )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root_logger.level))


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["SERVICE_NAME", "setup_logging", "get_logger"]
