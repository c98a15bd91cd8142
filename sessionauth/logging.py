"""Structured logging for the auth engine.

Every event is one JSON line carrying the caller's correlation id. Values
that would let a reader act as the user never reach the output: credential
fields are replaced outright, emails keep only their first character and
domain, and session ids are cut to a prefix that still lets one session be
followed across ``session_created``, ``session_rotated`` and the refresh
failures.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

REDACTED = "[redacted]"

# Key fragments whose values are bearer material
_CREDENTIAL_FRAGMENTS = ("password", "secret", "token", "authorization")
_SESSION_ID_PREFIX = 8


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind a correlation id for the current call, generating one if absent."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def mask_email(value: str) -> str:
    local, sep, domain = value.partition("@")
    if not sep or not local:
        return REDACTED
    return f"{local[0]}***@{domain}"


def _add_correlation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def _redact_auth_fields(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        if key == "event":
            continue
        lowered = key.lower()
        if any(fragment in lowered for fragment in _CREDENTIAL_FRAGMENTS):
            event_dict[key] = REDACTED
        elif lowered == "email" and isinstance(value, str):
            event_dict[key] = mask_email(value)
        elif lowered.endswith("session_id") and isinstance(value, str):
            event_dict[key] = value[:_SESSION_ID_PREFIX]
    return event_dict


def _configure_structlog(log_level: str) -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_correlation_id,
            _redact_auth_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


_configure_structlog(os.getenv("LOG_LEVEL", "INFO"))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
