"""Central logging configuration utilities.

A single composition-root driven `configure_logging` wires separate
stdout/stderr sinks and injects a correlation id into every log record.
Adapters and domain code never mutate global logging; they only emit via
`LoggingPort` or standard module loggers. Uvicorn is kept from replacing
this setup by handing it the dict from `generate_uvicorn_log_config`.

The correlation id is the request id for HTTP-triggered work and the job
id for background polling, so one grep follows a job end to end.
"""

from __future__ import annotations

import contextvars
import logging
import sys
from typing import Optional

# Populated per request by the FastAPI middleware and per job by the watcher
correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default="-"
)

DEFAULT_FORMAT = (
    "[%(asctime)s] %(levelname)s %(name)s %(correlation_id)s: %(message)s"
)


def coerce_level(level: int | str | None) -> int:
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    key = str(level).upper().strip()
    mapping = logging.getLevelNamesMapping()
    return mapping.get(key, logging.INFO)


class _CorrelationIdFilter(logging.Filter):
    """Inject correlation id from contextvar into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - simple
        record.correlation_id = correlation_id_var.get()
        return True


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover
        return record.levelno <= self.max_level


def configure_logging(
    level: int | str | None = None,
    fmt: Optional[str] = None,
    disable_uvicorn_access: bool = False,
) -> None:
    """Configure the root logger with stdout (DEBUG/INFO) and stderr (WARNING+) sinks."""
    numeric_level = coerce_level(level)
    formatter = logging.Formatter(fmt or DEFAULT_FORMAT)
    cid_filter = _CorrelationIdFilter()

    root = logging.getLogger()
    root.setLevel(numeric_level)

    # Clear existing handlers to avoid duplication on reload
    for h in list(root.handlers):
        root.removeHandler(h)

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
    stdout_handler.addFilter(cid_filter)
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.addFilter(cid_filter)
    stderr_handler.setFormatter(formatter)

    root.addHandler(stdout_handler)
    root.addHandler(stderr_handler)

    if disable_uvicorn_access:
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger("tryon").debug(
        "Logging configured level=%s disable_uvicorn_access=%s", numeric_level, disable_uvicorn_access
    )


def generate_uvicorn_log_config(level: int | str | None) -> dict:
    """Uvicorn `log_config` that routes its loggers through our filters and format."""
    numeric_level = coerce_level(level)
    handler = {
        "class": "logging.StreamHandler",
        "formatter": "default",
        "filters": ["correlation_id"],
        "stream": "ext://sys.stdout",
    }
    loggers = {
        name: {"handlers": ["default"], "level": numeric_level, "propagate": False}
        for name in ("uvicorn", "uvicorn.error", "uvicorn.access")
    }
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "correlation_id": {"()": "tryon.core.logging_config._CorrelationIdFilter"},
        },
        "formatters": {
            "default": {
                "()": "logging.Formatter",
                "fmt": DEFAULT_FORMAT,
            }
        },
        "handlers": {"default": handler},
        "loggers": loggers,
    }
