"""
Logging setup for certflow.

One root handler on stderr, in one of two shapes:

    json   one object per line; workflow fields passed via ``extra=``
           (workflow_run_id, step_id, step_type, ...) become top-level keys
    text   compact console lines with the run/step suffix appended

LOG_FORMAT picks the shape explicitly; otherwise debug and testing apps get
text and everything else gets json. LOG_LEVEL overrides the level.
Records emitted inside a request carry its X-Request-ID.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_app_context

# Record attributes promoted into the JSON object when set
CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "project_id",
    "workflow_run_id",
    "step_id",
    "step_type",
    "provider",
    "model",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "httpx", "httpcore", "openai", "anthropic", "google_genai")


class RequestIdFilter(logging.Filter):
    """Stamp the current request id on records that do not carry one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_app_context():
            record.request_id = g.get("request_id")
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """``12:01:07 INFO  certflow.services...: message [run=3 step=hazard_extraction]``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = []
        run_id = getattr(record, "workflow_run_id", None)
        if run_id is not None:
            tags.append(f"run={run_id}")
        step_type = getattr(record, "step_type", None)
        if step_type:
            tags.append(f"step={step_type}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tags.append(f"{duration:.0f}ms")
        line = f"{ts} {record.levelname:<5} {record.name}: {record.getMessage()}"
        if tags:
            line += f" [{' '.join(tags)}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _format_name(app) -> str:
    explicit = os.getenv("LOG_FORMAT", "").strip().lower()
    if explicit in ("json", "text"):
        return explicit
    return "text" if app.debug or app.testing else "json"


def configure_logging(app):
    """Install the root handler for ``app``; safe to call once per app instance."""
    fmt = _format_name(app)
    default_level = "DEBUG" if app.debug else "INFO"
    level_name = os.getenv("LOG_LEVEL", app.config.get("LOG_LEVEL", default_level)).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ConsoleFormatter())
    handler.addFilter(RequestIdFilter())

    root = logging.getLogger()
    # tests build several apps in one process
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
