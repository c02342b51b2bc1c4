"""
Logging setup for the workflow service.

Every record passes through ``WorkflowContextFilter``, which stamps the
current request id (inside a request) and masks approval links, so a
capability token never reaches a log sink even when a message quotes a URL.

Services attach workflow context with
``extra={"project_id", "stage_id", "approval_id", "event_type"}``; both
formatters render those keys.

    LOG_FORMAT  json | text   (default: json in production, text otherwise)
    LOG_LEVEL   level name    (default: config LOG_LEVEL in production, DEBUG otherwise)
"""

import json
import logging
import os
import re
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Keys lifted from ``extra=`` into structured output, in display order
CONTEXT_FIELDS = (
    "request_id",
    "project_id",
    "stage_id",
    "approval_id",
    "event_type",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
)

_APPROVAL_LINK = re.compile(r"(/approval/)[A-Za-z0-9_\-]{16,}")


def mask_approval_links(text: str) -> str:
    return _APPROVAL_LINK.sub(r"\1***", text)


def _context_of(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) not in (None, "")
    }


class WorkflowContextFilter(logging.Filter):
    """Adds ``request_id`` and rewrites the message with approval links masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        message = record.getMessage()
        masked = mask_approval_links(message)
        if masked != message:
            record.msg, record.args = masked, None
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update(_context_of(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ConsoleFormatter(logging.Formatter):
    """Single-line console output; context is appended as key=value pairs."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        context = _context_of(record)
        duration = context.pop("duration_ms", None)
        line = f"{stamp} {level} {record.name}: {record.getMessage()}"
        if context:
            line += "  " + " ".join(f"{k}={v}" for k, v in context.items())
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install the workflow log handler on the root logger.

    Calling it again (one app per test session, several in scripts) replaces
    the handler it installed before and leaves other handlers alone.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL") or (app.config.get("LOG_LEVEL", "INFO") if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)
    fmt = (os.getenv("LOG_FORMAT") or ("json" if is_prod else "text")).lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name("workflow")
    handler.setLevel(level)
    handler.addFilter(WorkflowContextFilter())
    if fmt == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(ConsoleFormatter(use_color=sys.stderr.isatty()))

    root = logging.getLogger()
    for existing in [h for h in root.handlers if h.get_name() == "workflow"]:
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "flask_limiter"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
