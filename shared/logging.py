"""
Structured logging for the Commerce Access Service.

Every event is rendered as one JSON line stamped with the service name and,
while a request is in flight, its ``request_id`` and authenticated
``user_id``. Correlation fields are held in structlog's context variables so
they follow a request across awaits.
"""

import logging
import sys
import uuid
from typing import Any, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars, merge_contextvars


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Route structlog through stdlib logging and render JSON to stdout."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _service_stamper(service_name),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _service_stamper(service_name: str):
    def stamp_service(logger: Any, method_name: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", service_name)
        return event_dict

    return stamp_service


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind the request id for the current request, generating one if absent."""
    request_id = request_id or uuid.uuid4().hex
    bind_contextvars(request_id=request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return get_contextvars().get("request_id")


def set_user_context(user_id: Optional[Any] = None):
    if user_id is not None:
        bind_contextvars(user_id=str(user_id))


def clear_context():
    clear_contextvars()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
