"""dbtrace logging utilities.

Every subsystem logs through :func:`get_logger` so that profiler and log
source diagnostics share one configuration. Files receive JSON documents,
the console gets Rich output. Timing records emitted through
:class:`dbtrace.profiling.sinks.LoggingSink` travel on their own logger and
are written verbatim by the ``records`` handler.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

RECORDS_LOGGER = "dbtrace.records"

_CONTEXT_KEYS = ("session_id", "timing_id", "correlation_id", "source")


class JsonFormatter(logging.Formatter):
    """Format log records as JSON documents.

    Only a lean set of fields is kept: timestamp, severity, logger name and
    message, plus the profiling identifiers when they were passed through
    ``extra``.
    """

    default_time_format = "%Y-%m-%dT%H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                self.default_time_format
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        for key in _CONTEXT_KEYS:
            if key in record.__dict__:
                payload[key] = str(record.__dict__[key])
        return json.dumps(payload, ensure_ascii=False)


def _build_handlers(log_dir: Path, enable_rich: bool) -> Dict[str, Dict[str, Any]]:
    handlers: Dict[str, Dict[str, Any]] = {
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "json",
            "filename": str(log_dir / "dbtrace.log"),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 5,
        },
        "records": {
            "class": "logging.FileHandler",
            "formatter": "raw",
            "filename": str(log_dir / "sessions.jsonl"),
        },
    }
    if enable_rich:
        handlers["console"] = {
            "class": "rich.logging.RichHandler",
            "formatter": "rich",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_path": False,
        }
    else:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": "json",
        }
    return handlers


def configure_logging(*, level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Configure global logging for dbtrace.

    Parameters
    ----------
    level:
        Minimum severity emitted by the diagnostic handlers.
    log_dir:
        Directory for ``dbtrace.log`` and the ``sessions.jsonl`` record file.
        Falls back to ``$DBTRACE_LOG_DIR`` or ``~/.dbtrace/logs``.

    Safe to call repeatedly; each call replaces the previous handlers.
    """

    log_dir = log_dir or Path(os.environ.get("DBTRACE_LOG_DIR", Path.home() / ".dbtrace" / "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    enable_rich = os.environ.get("DBTRACE_RICH", "1") != "0"
    handlers = _build_handlers(log_dir, enable_rich)

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "dbtrace.utils.logging.JsonFormatter",
            },
            "rich": {
                "format": "%(message)s",
                "datefmt": "%H:%M:%S",
            },
            "raw": {
                "format": "%(message)s",
            },
        },
        "handlers": handlers,
        "loggers": {
            RECORDS_LOGGER: {
                "level": "INFO",
                "handlers": ["records"],
                "propagate": False,
            },
        },
        "root": {
            "level": level,
            "handlers": [name for name in handlers if name != "records"],
        },
    }

    logging.config.dictConfig(config)


def get_logger(name: str) -> logging.Logger:
    """Return a logger bound to the shared dbtrace configuration."""

    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "JsonFormatter", "RECORDS_LOGGER"]
