"""Structured audit logging for attempt integrity and submission events."""

import logging
import os
from typing import Any

import structlog

from attempt_engine.core.config import settings

# Keys to redact from log fields
REDACTED_KEYS = {
    "password",
    "token",
    "authorization",
    "cookie",
    "secret",
    "api_key",
    "apikey",
    "access_token",
    "refresh_token",
    "client_secret",
}


def redact_sensitive_data(data: dict[str, Any]) -> dict[str, Any]:
    """
    Redact sensitive keys from log data.

    Args:
        data: Dictionary to redact

    Returns:
        Dictionary with sensitive values redacted
    """
    redacted = {}
    for key, value in data.items():
        key_lower = key.lower()
        if any(redacted_key in key_lower for redacted_key in REDACTED_KEYS):
            redacted[key] = "[REDACTED]"
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_data(value)
        elif isinstance(value, list):
            redacted[key] = [
                redact_sensitive_data(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            redacted[key] = value
    return redacted


def setup_structured_logging() -> None:
    """Configure structlog to emit JSON audit events."""
    log_level = os.getenv("LOG_LEVEL", settings.LOG_LEVEL).upper()
    service_name = os.getenv("SERVICE_NAME", settings.PROJECT_NAME)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        service_name=service_name,
        environment=settings.ENV,
    )


def get_audit_logger() -> structlog.BoundLogger:
    """Get audit logger for integrity and submission events."""
    return structlog.get_logger("audit")


def audit_log(
    event: str,
    attempt_id: str | None = None,
    action: str | None = None,
    **fields: Any,
) -> None:
    """
    Log an audit event.

    Args:
        event: Event name/type
        attempt_id: Attempt the event belongs to
        action: Action performed
        **fields: Additional fields (will be redacted)
    """
    logger = get_audit_logger()

    audit_data: dict[str, Any] = {"audit": True}
    if attempt_id:
        audit_data["attempt_id"] = attempt_id
    if action:
        audit_data["action"] = action

    audit_data.update(redact_sensitive_data(fields))

    logger.warning(event, **audit_data)
