"""
Logging configuration for gopcache.

This module configures structlog on top of the standard library logging
module. Runtime modules keep using ``logging.getLogger(__name__)``; their
records go through a ProcessorFormatter on the root handler, so they are
redacted and rendered the same way as structlog events.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog

_HANDLER_NAME = "gopcache"

# Keys whose values are always masked
_SECRET_KEYS = (
    "token",
    "password",
    "secret",
    "api_key",
    "authorization",
    "range_cache_url",
)

# Patterns to redact in string values
_SECRET_PATTERNS = (
    re.compile(r"://[^/:@\s]+:[^@/\s]+@"),  # URLs with credentials
    re.compile(r"(token|password|sig|signature)=[^&\s]+", re.IGNORECASE),
)


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        value = _SECRET_PATTERNS[0].sub("://***@", value)
        return _SECRET_PATTERNS[1].sub(lambda m: m.group(1) + "=***", value)
    if isinstance(value, dict):
        return {k: _redact_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(_redact_value(item) for item in value)
    return value


def redact_secrets(_, __, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Redact credentials from log events (media URLs often carry signed tokens)."""
    for key in list(event_dict.keys()):
        if any(secret in key.lower() for secret in _SECRET_KEYS):
            event_dict[key] = "***REDACTED***"
        else:
            event_dict[key] = _redact_value(event_dict[key])
    return event_dict


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog and route stdlib records through the same processors."""
    # ConsoleRenderer formats exceptions itself
    render_chain: list[Any] = (
        [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        if json_output
        else [structlog.dev.ConsoleRenderer()]
    )
    shared_processors: list[Any] = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    # Records from logging.getLogger(__name__) in the runtime
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[*shared_processors, redact_secrets],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *render_chain,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.set_name(_HANDLER_NAME)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            redact_secrets,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str, **context: Any) -> structlog.stdlib.BoundLogger:
    """Get a configured logger with service context."""
    logger = structlog.get_logger(name)
    return logger.bind(service="gopcache", **context)
