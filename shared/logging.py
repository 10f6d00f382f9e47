"""
Structured logging for the FoodList access layer.

Components log through structlog with keyword context. The current request
id and profile owner live in structlog's context variables, so every event
emitted while a request or load is running carries them.
"""

import logging
import sys
import uuid
from typing import Any, Dict, List, Optional

import structlog

REQUEST_ID_KEY = "request_id"
OWNER_ID_KEY = "owner_id"


def configure_logging(client_name: str, log_level: str = "info", json_logs: bool = True) -> None:
    """Route structlog through the stdlib root logger at ``log_level``."""
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_component,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    processors.append(structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    structlog.contextvars.bind_contextvars(client=client_name)


def add_component(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    # "gateway.dispatch" -> "gateway"
    logger_name = event_dict.get("logger", "")
    if "." in logger_name:
        event_dict["component"] = logger_name.split(".", 1)[0]
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when omitted) to the current context."""
    request_id = request_id or uuid.uuid4().hex
    structlog.contextvars.bind_contextvars(**{REQUEST_ID_KEY: request_id})
    return request_id


def get_request_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get(REQUEST_ID_KEY)


def set_owner_context(owner_id: Optional[str] = None):
    if owner_id:
        structlog.contextvars.bind_contextvars(**{OWNER_ID_KEY: owner_id})
    else:
        structlog.contextvars.unbind_contextvars(OWNER_ID_KEY)


def clear_context():
    """Drop request and owner correlation, keeping the client name."""
    structlog.contextvars.unbind_contextvars(REQUEST_ID_KEY, OWNER_ID_KEY)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
