"""
Structured logging configuration for the orchestration core.

JSON-structured logging with correlation IDs. Every entry carries:
- timestamp (ISO 8601 format)
- level
- service (service name identifier)
- trace_id / request_id (when a request is in flight)
- user_id / organization_id (when the caller is known)
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
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
organization_id_var: ContextVar[Optional[str]] = ContextVar("organization_id", default=None)

SERVICE_NAME = "aicore_orchestrator"


def add_request_context(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Add request context (trace_id, request_id, user_id, organization_id) to log entries.
    """
    for key, var in (
        ("trace_id", trace_id_var),
        ("request_id", request_id_var),
        ("user_id", user_id_var),
        ("organization_id", organization_id_var),
    ):
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value

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
    Configure structured logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name identifier (defaults to SERVICE_NAME)
        json_output: JSON lines for production, console renderer for development
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_context,
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
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Get a structured logger instance (typically with ``__name__``)."""
    return structlog.get_logger(name)


def bind_request_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    trace_id: Optional[str] = None,
) -> None:
    """
    Bind caller/request identifiers for every log entry emitted in this context.

    Values left as None clear the corresponding variable so a reused task does
    not leak identifiers from a previous request.
    """
    request_id_var.set(request_id)
    user_id_var.set(user_id)
    organization_id_var.set(organization_id)
    if trace_id is not None:
        trace_id_var.set(trace_id)


def clear_request_context() -> None:
    request_id_var.set(None)
    user_id_var.set(None)
    organization_id_var.set(None)
    trace_id_var.set(None)


def set_trace_id(trace_id: Optional[str]) -> None:
    trace_id_var.set(trace_id)


def get_trace_id() -> Optional[str]:
    return trace_id_var.get()


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def generate_request_id() -> str:
    """Generate a new unique request ID (UUID4 string)."""
    return str(uuid.uuid4())
