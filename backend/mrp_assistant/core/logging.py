"""
Structured logging configuration for the assistant service.

All logs are JSON-structured (console-rendered in development) and include:
- timestamp (ISO 8601 format)
- level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- service (service name identifier)
- trace_id / request_id (per HTTP request)
- session_id / round / tool_call_id (bound by the conversation driver and
  the tool dispatcher through structlog.contextvars)
"""
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from structlog.types import Processor

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

SERVICE_NAME = "mrp_assistant_api"


def add_trace_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Add request-level context (trace_id, request_id, service) to log entries.

    Session-level ids (session_id, round, tool_call_id) arrive through
    merge_contextvars and are not touched here.
    """
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id

    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    event_dict["service"] = SERVICE_NAME

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()

    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name identifier (defaults to SERVICE_NAME)
        json_output: If True, output JSON format (for production). If False, use console format (for dev)
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog logger bound with context
    """
    return structlog.get_logger(name)


def set_trace_id(trace_id: Optional[str]) -> None:
    """Set trace ID in context for current request."""
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    """Get current trace ID from context."""
    return trace_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    """Set request ID in context for current request."""
    request_id_var.set(request_id)


def generate_request_id() -> str:
    """Generate a new unique request ID (UUID4 string)."""
    return str(uuid.uuid4())


def generate_trace_id() -> str:
    """Generate a new unique trace ID (UUID4 string)."""
    return str(uuid.uuid4())


def generate_session_id() -> str:
    """
    Generate an id for one assistant conversation session.

    Short hex form keeps log lines readable; uniqueness within a process
    lifetime is all that is required.
    """
    return uuid.uuid4().hex[:16]
