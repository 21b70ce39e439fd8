"""
Structured JSON logging for the Prompt Enhance Gateway.

Every event carries the service name, the current request id and, once
authenticated, the caller subject. Credential-bearing keys are masked
before rendering.
"""

import logging
import sys
import time
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
subject_var: ContextVar[Optional[str]] = ContextVar("subject", default=None)

REDACTED_KEYS = frozenset({"api_key", "authorization", "secret", "token", "proof", "upstream_key"})
REDACTED_VALUE = "[REDACTED]"

EventDict = Dict[str, Any]


def configure_logging(service_name: str, log_level: str = "info") -> None:
    def add_service(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service", service_name)
        return event_dict

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="time"),
            add_epoch,
            add_service,
            add_request_context,
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def add_epoch(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["ts"] = time.time()
    return event_dict


def add_request_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Copy the request id and subject bound for this task onto the event."""
    for key, var in (("request_id", request_id_var), ("subject", subject_var)):
        value = var.get()
        if value:
            event_dict.setdefault(key, value)
    return event_dict


def redact_secrets(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
        if value is not None and key.lower() in REDACTED_KEYS:
            event_dict[key] = REDACTED_VALUE
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when absent) and return it."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_subject_context(subject: Optional[str] = None) -> None:
    if subject:
        subject_var.set(subject)


def clear_context() -> None:
    request_id_var.set(None)
    subject_var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
