"""Structured logging setup shared by the app, the stores and the sweeper."""

import logging
import os
from typing import Any, Dict

import structlog

_SECRET_KEYS = ("token", "authorization", "secret", "cookie", "session_id")
_configured = False


def _mask_secrets(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask credential-like values, keeping a short prefix for correlation."""
    for key in list(event_dict.keys()):
        if any(secret in key.lower() for secret in _SECRET_KEYS):
            value = event_dict[key]
            if isinstance(value, str) and len(value) > 6:
                event_dict[key] = value[:4] + "***"
    return event_dict


def configure_logging(level: str = None, json_output: bool = None) -> None:
    global _configured

    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = os.getenv("LOG_JSON", "false").lower() in {"1", "true", "yes", "on"}

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _mask_secrets,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.ConsoleRenderer(colors=False)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    _configured = True


def get_logger(name: str):
    if not _configured:
        configure_logging()
    return structlog.get_logger(name)
