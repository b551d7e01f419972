"""
Shared logging configuration for the Smart Cache CLI.
"""

import sys
import structlog
import logging
import uuid
import time
from typing import Any, Dict, Optional
from contextvars import ContextVar

# Context variables for correlation
session_id_var: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
namespace_var: ContextVar[Optional[str]] = ContextVar('namespace', default=None)


def configure_logging(service_name: str, log_level: str = "warning") -> None:
    """Configure structured logging.

    Events are rendered as JSON on stderr so command output on stdout
    stays machine readable.
    """

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context,
            add_correlation_context,
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
        force=True,
    )
    logging.getLogger(service_name).setLevel(getattr(logging, log_level.upper()))


def add_service_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to log events."""
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["service"] = logger_name.split(".")[0]

    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add session and namespace to log events."""
    session_id = session_id_var.get()
    if session_id:
        event_dict["session_id"] = session_id

    namespace = namespace_var.get()
    if namespace:
        event_dict["namespace"] = namespace

    return event_dict


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def set_session_context(namespace: Optional[str] = None, session_id: Optional[str] = None) -> str:
    """Set session correlation context."""
    if session_id is None:
        session_id = str(uuid.uuid4())
    session_id_var.set(session_id)
    if namespace:
        namespace_var.set(namespace)
    return session_id


def clear_context():
    """Clear all context variables."""
    session_id_var.set(None)
    namespace_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
