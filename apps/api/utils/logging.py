"""Structured logging for the decision memory service.

JSON lines in production, a compact human format in development. Every line
carries the request id and, when the caller works in a named session, the
session id, both read from ContextVars set by RequestIDMiddleware or
LogContext.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "session_id": session_id_var,
    "trace_id": trace_id_var,
}

# Attributes every LogRecord has; anything else came in through extra={...}
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}

NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "openai",
    "aiosqlite",
    "sqlalchemy.engine",
    "uvicorn.access",
)


def get_request_id() -> str | None:
    return request_id_var.get()


def get_session_id() -> str | None:
    """Work session of the caller, if it sent one."""
    return session_id_var.get()


def get_trace_id() -> str | None:
    return trace_id_var.get()


def current_context() -> dict[str, str]:
    """Non-empty context values, keyed by name."""
    values = {name: var.get() for name, var in _CONTEXT_VARS.items()}
    return {name: value for name, value in values.items() if value}


def set_request_context(
    request_id: str | None = None,
    session_id: str | None = None,
    trace_id: str | None = None,
):
    """Set the given context values; None leaves a value untouched."""
    for name, value in (
        ("request_id", request_id),
        ("session_id", session_id),
        ("trace_id", trace_id),
    ):
        if value is not None:
            _CONTEXT_VARS[name].set(value)


def clear_request_context():
    for var in _CONTEXT_VARS.values():
        var.set(None)


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    {"timestamp": "...", "level": "INFO", "logger": "services.graph_builder",
     "message": "Saved decision_...", "request_id": "...", "session_id": "...",
     "extra": {...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **current_context(),
        }

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
            entry["exception_type"] = (
                record.exc_info[0].__name__ if record.exc_info[0] else None
            )

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """2026-01-29 12:34:56.789 | INFO     | services.search | [req-abc1 sess-42] message"""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        tags = [value[:8] for value in (get_request_id(), get_session_id()) if value]
        prefix = f"[{' '.join(tags)}] " if tags else ""

        line = (
            f"{timestamp} | {record.levelname.ljust(8)} | {record.name} | "
            f"{prefix}{record.getMessage()}"
        )
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(level: str = "INFO", json_format: bool | None = None):
    """Install a single stdout handler on the root logger.

    Args:
        level: Log level name
        json_format: JSON output; None picks JSON unless DEBUG is set in the environment
    """
    if json_format is None:
        json_format = os.getenv("DEBUG", "false").lower() not in ("true", "1", "yes")

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if json_format else HumanReadableFormatter())
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Module logger; configures logging with defaults if nothing did yet."""
    if not logging.getLogger().handlers:
        configure_logging()
    return logging.getLogger(name)


class LogContext:
    """Temporarily set context values for every log line in a block.

    GraphBuilder.save() uses it to tag every log line written while a
    decision from a given work session is stored.

    Usage:
        with LogContext(session_id="sess-456"):
            logger.info("tagged with the session")
    """

    def __init__(
        self,
        request_id: str | None = None,
        session_id: str | None = None,
        trace_id: str | None = None,
    ):
        self._values = {
            "request_id": request_id,
            "session_id": session_id,
            "trace_id": trace_id,
        }
        self._tokens: list = []

    def __enter__(self):
        for name, value in self._values.items():
            if value:
                var = _CONTEXT_VARS[name]
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        # Reverse order so nested contexts unwind cleanly
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
        return False

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
