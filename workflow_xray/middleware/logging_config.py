"""
Workflow X-Ray
Logging setup.

One stderr handler on the root logger:
    - JSONFormatter for production (one object per line)
    - ReadableFormatter for development and tests

Pipeline modules attach context with ``extra=`` (analysis_hash, step_id,
cache_backend); the timing middleware adds the request fields.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

CONTEXT_FIELDS = (
    "method",
    "path",
    "status",
    "duration_ms",
    "request_id",
    "analysis_hash",
    "event_type",
    "step_id",
    "cache_backend",
)

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "anthropic", "httpx")


def _has_exception(record: logging.LogRecord) -> bool:
    return bool(record.exc_info) and record.exc_info[0] is not None


class JSONFormatter(logging.Formatter):
    """Single-line JSON records for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update({
            name: getattr(record, name)
            for name in CONTEXT_FIELDS
            if getattr(record, name, None) is not None
        })
        if _has_exception(record):
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class ReadableFormatter(logging.Formatter):
    """Coloured one-liners: time, level, logger, message, then hash and duration if present."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname, "")
        line = (f"{color}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET} "
                f"{record.name}: {record.getMessage()}")

        analysis_hash = getattr(record, "analysis_hash", None)
        if analysis_hash:
            line += f" ({analysis_hash})"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"

        if _has_exception(record):
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install the root handler for ``app``.

    LOG_LEVEL overrides the default (INFO in production, DEBUG otherwise).
    Calling it again replaces the handler, so repeated app creation does not
    duplicate output.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s",
                        level_name, "JSON" if production else "readable")
