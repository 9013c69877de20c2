"""
League Registration Core - Structured JSON Logging

Provides structured logging for production environments.
Outputs JSON format for log aggregation; plain text in development.
Every record carries the current registration session and event so a pass
can be followed across the resolver, the creation tiers and the summary.
"""

import logging
import json
import sys
import os
from datetime import datetime, timezone
from contextvars import ContextVar
from typing import Any, Dict, Optional
import traceback

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName"
}


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs JSON logs.
    Compatible with log aggregation services.
    """

    def __init__(self, service_name: str = "league-registration"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")
        self.hostname = os.environ.get("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
            "environment": self.environment,
            "hostname": self.hostname,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None,
            }

        extra_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


# Registration context is per asyncio task; concurrent requests never share it.
_session_id_var: ContextVar[Optional[str]] = ContextVar("registration_session_id", default=None)
_event_label_var: ContextVar[Optional[str]] = ContextVar("registration_event_label", default=None)


class RegistrationContextFilter(logging.Filter):
    """
    Adds registration session context to log records.
    """

    def set_context(self, session_id: Optional[str] = None, event_label: Optional[str] = None):
        set_registration_context(session_id, event_label)

    def clear_context(self):
        clear_registration_context()

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = _session_id_var.get()
        record.event_label = _event_label_var.get()
        return True


# Global context filter instance, installed by setup_logging()
_context_filter: Optional[RegistrationContextFilter] = None


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "league-registration"
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        service_name: Service name for log aggregation

    Returns:
        Configured root logger
    """
    global _context_filter

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))

    if json_format:
        handler.setFormatter(JSONFormatter(service_name=service_name))
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(session_id)s] %(message)s"
        ))

    _context_filter = RegistrationContextFilter()
    handler.addFilter(_context_filter)

    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the specified name."""
    return logging.getLogger(name)


def set_registration_context(session_id: Optional[str] = None, event_label: Optional[str] = None):
    """Set session context for logging in the current task."""
    _session_id_var.set(session_id)
    _event_label_var.set(event_label)


def clear_registration_context():
    """Clear session context for the current task."""
    _session_id_var.set(None)
    _event_label_var.set(None)
