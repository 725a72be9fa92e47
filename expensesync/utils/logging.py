"""
Logging setup for expensesync.

The CLI calls `configure_logging` once; every other module only asks for a
named logger and attaches structured context through `extra=`:

    from expensesync.utils.logging import configure_logging, get_logger

    configure_logging(level="INFO", json_logs=False)
    log = get_logger(__name__)
    log.info("[SYNC COMPLETE]", extra={"pushed": 3, "pulled": 12})

The console format is for people watching a terminal. The JSON format emits
one object per line with the `extra=` fields promoted to top-level keys, for
clients that run headless under a supervisor.
"""

from __future__ import annotations

import json
import logging
import logging.config
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else arrived through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "taskName"}

# Context keys whose values never reach a log sink verbatim.
_SECRET_KEYS = frozenset({"api_token", "authorization", "token"})
_IMAGE_KEYS = frozenset({"local_image_data", "localImageData"})
_IMAGE_PREVIEW_CHARS = 16

# Transport libraries log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _scrub(key: str, value: Any) -> Any:
    if key.lower() in _SECRET_KEYS and value is not None:
        return "***"
    if key in _IMAGE_KEYS and isinstance(value, str) and len(value) > _IMAGE_PREVIEW_CHARS:
        return f"{value[:_IMAGE_PREVIEW_CHARS]}...({len(value)} chars)"
    return value


def _json_formatter(record: logging.LogRecord) -> str:
    """Render a log record as a single JSON line."""
    payload: Dict[str, Any] = {
        "level": record.levelname,
        "logger": record.name,
        "message": record.getMessage(),
    }
    for key, value in vars(record).items():
        if key not in _RESERVED_ATTRS:
            payload[key] = _scrub(key, value)
    if record.exc_info:
        payload["exc_info"] = logging.Formatter().formatException(record.exc_info)
    if record.stack_info:
        payload["stack_info"] = record.stack_info
    return json.dumps(payload, default=str)


class JsonFormatter(logging.Formatter):
    """Formatter emitting `_json_formatter` output."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        return _json_formatter(record)


def configure_logging(
    level: str = "INFO",
    json_logs: bool = False,
    force: bool = True,
) -> None:
    """
    Configure root logging for the expensesync process.

    Parameters
    ----------
    level : str
        Logging level name for expensesync loggers (e.g., "DEBUG", "INFO").
    json_logs : bool
        Emit one JSON object per line instead of the console format.
    force : bool
        Replace handlers installed earlier. With False, an already configured
        root logger is left alone (the host application owns logging).
    """
    if not force and logging.getLogger().handlers:
        return

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "console": {
                    "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                    "datefmt": "%H:%M:%S",
                },
                "json": {"()": JsonFormatter},
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "json" if json_logs else "console",
                    "level": level,
                }
            },
            "loggers": {name: {"level": "WARNING"} for name in _QUIET_LOGGERS},
            "root": {"handlers": ["default"], "level": level},
        }
    )


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "JsonFormatter"]
