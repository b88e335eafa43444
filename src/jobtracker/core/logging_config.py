"""Logging setup for the tracker process.

`configure_logging` is called once from the composition root. It routes
DEBUG/INFO to stdout and WARNING+ to stderr, and stamps every record with the
current correlation id: the job id inside a polling task, the request id
inside an HTTP handler, "-" elsewhere.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from contextlib import contextmanager
from typing import Iterator, Optional

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default="-"
)

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s %(correlation_id)s: %(message)s"

# chatty third-party loggers held at WARNING unless the tracker itself debugs
_NOISY_LOGGERS = ("aiohttp.access", "uvicorn.access")


def coerce_level(level: int | str | None) -> int:
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    return logging.getLevelNamesMapping().get(str(level).upper().strip(), logging.INFO)


@contextmanager
def correlation_scope(correlation_id: str) -> Iterator[str]:
    """Bind `correlation_id` for the enclosed block."""
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


class _SinkFilter(logging.Filter):
    """Keeps records within [low, high] and injects the correlation id."""

    def __init__(self, low: int, high: int):
        super().__init__()
        self.low = low
        self.high = high

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get()
        return self.low <= record.levelno <= self.high


def _sink(stream, low: int, high: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.StreamHandler(stream=stream)
    handler.addFilter(_SinkFilter(low, high))
    handler.setFormatter(formatter)
    return handler


def configure_logging(level: int | str | None = None, fmt: Optional[str] = None) -> None:
    """Install the stdout/stderr sinks on the root logger.

    Uvicorn adopts this setup when started with `log_config=None`. Calling
    again replaces the previous sinks.
    """
    numeric_level = coerce_level(level)
    formatter = logging.Formatter(fmt or DEFAULT_FORMAT)

    root = logging.getLogger()
    root.setLevel(numeric_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.addHandler(_sink(sys.stdout, logging.DEBUG, logging.INFO, formatter))
    root.addHandler(_sink(sys.stderr, logging.WARNING, logging.CRITICAL, formatter))

    if numeric_level > logging.DEBUG:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("jobtracker").debug("Logging configured level=%s", logging.getLevelName(numeric_level))
