"""
logging_config.py - Logging setup shared by every pipeline stage.

All modules log through named loggers using the
`event_name | key=value | key=value` message convention so batch runs can
be grepped, or emitted as JSON lines with `--log-json` for log shipping.
"""

from __future__ import annotations

import functools
import json
import logging
import sys
from typing import Callable, TypeVar

T = TypeVar("T")

TEXT_FORMAT = "%(asctime)s [%(name)-18s] %(levelname)-7s %(message)s"
DATE_FORMAT = "%H:%M:%S"


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; trip locations and reasons carry quotes."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: int = logging.INFO, json_format: bool = False) -> None:
    """Configure the root logger with a single stderr handler.

    Args:
        level: Logging level for the root logger.
        json_format: If True, emit one JSON object per line.
    """
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    if json_format:
        formatter: logging.Formatter = JsonLineFormatter(datefmt=DATE_FORMAT)
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    root.addHandler(handler)

    # uvicorn/fastapi access logs are noisy at DEBUG.
    if level <= logging.DEBUG:
        logging.getLogger("uvicorn.access").setLevel(logging.INFO)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def graceful(default_factory: Callable[[], T], log_level: int = logging.WARNING):
    """Decorator for best-effort helpers: log the failure, return a default.

    Only used where a failure must not abort a batch (sort keys, work-day
    detection). Core decisions handle their errors explicitly.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except (KeyboardInterrupt, SystemExit):
                raise
            except Exception as exc:
                logger = logging.getLogger(func.__module__)
                logger.log(
                    log_level,
                    "graceful_fallback | func=%s | error_type=%s | error=%s",
                    func.__name__,
                    type(exc).__name__,
                    exc,
                    exc_info=log_level >= logging.ERROR,
                )
                return default_factory()

        return wrapper

    return decorator
