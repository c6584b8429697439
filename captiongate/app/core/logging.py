"""Logging setup for captiongate.

Everything goes through the standard ``logging`` module configured with
``dictConfig``. ``LOG_FORMAT`` picks one of three console renderings:

* ``text``: one plain line per record
* ``structured``: plain line plus request, caller and operation context
* ``json``: one JSON object per record, for log shippers

Admission code attaches context with ``extra=get_log_context(...)``. The
request ID is picked up automatically from :data:`request_id_var`, which the
request ID middleware sets for the duration of each request.
"""

import json
import logging
import logging.config
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Dict, Optional

from captiongate.app.core.config import settings

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Record attributes that admission code sets through ``extra``.
CONTEXT_FIELDS = ("request_id", "identity", "plan", "operation", "route")

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
STRUCTURED_FORMAT = (
    TEXT_FORMAT
    + " - request_id=%(request_id)s identity=%(identity)s plan=%(plan)s"
    " route=%(route)s operation=%(operation)s"
)

# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
}


class JSONFormatter(logging.Formatter):
    """Render a record as a single JSON object.

    Context fields are lifted to the top level and omitted when unset. Any
    other ``extra`` attribute is nested under ``"extra"``.
    """

    CONTEXT_FIELDS = CONTEXT_FIELDS

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {"file": record.pathname, "line": record.lineno, "function": record.funcName},
        }
        entry.update(
            (name, getattr(record, name))
            for name in self.CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        )

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in self.CONTEXT_FIELDS
        }
        if extra:
            entry["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(entry, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Make every context field present on the record.

    ``request_id`` falls back to the ID of the request being served; the
    other fields default to None so format strings never fail.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


def _console_formatter(log_format: str) -> Dict[str, Any]:
    if log_format == "json":
        return {"()": f"{__name__}.JSONFormatter"}
    if log_format == "structured":
        return {"format": STRUCTURED_FORMAT}
    return {"format": TEXT_FORMAT}


def get_logging_config() -> Dict[str, Any]:
    """Build the ``dictConfig`` mapping from settings."""
    log_format = settings.log_format.lower()
    if log_format not in ("json", "structured"):
        log_format = "text"
    log_level = settings.log_level.upper()

    # Third-party loggers are capped at WARNING to keep request logs readable.
    quiet = {"level": "WARNING"}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {log_format: _console_formatter(log_format)},
        "filters": {"context": {"()": f"{__name__}.ContextFilter"}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": log_format,
                "stream": sys.stdout,
                "filters": ["context"],
            },
        },
        "loggers": {
            "captiongate": {"level": log_level, "handlers": ["console"], "propagate": False},
            "uvicorn": {"level": log_level, "handlers": ["console"], "propagate": False},
            "uvicorn.access": quiet,
            "httpx": quiet,
            "httpcore": quiet,
        },
        "root": {"level": log_level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str = "captiongate") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra`` mapping, dropping fields that are None.

    Example:
        >>> logger.info(
        ...     "Quota exhausted",
        ...     extra=get_log_context(identity="ip:1.2.3.4", plan="guest")
        ... )
    """
    return {key: value for key, value in fields.items() if value is not None}
