"""Structured logging configuration with request_id propagation"""

import contextvars
import logging
import re
import sys
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

import structlog

# Context variable for request_id propagation
request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)

_REDACTED = "[REDACTED]"
_SECRET_FLAGS = ("--cookies",)
_BOT_TOKEN_RE = re.compile(r"/bot[^/\s]+")


def redact_command(cmd: Sequence[str]) -> List[str]:
    """
    Mask secret-bearing arguments of an external command before logging it

    Args:
        cmd: Command and its arguments

    Returns:
        Copy of the command with the value after each secret flag replaced
    """
    redacted: List[str] = []
    hide_next = False
    for arg in cmd:
        if hide_next:
            redacted.append(_REDACTED)
            hide_next = False
            continue
        redacted.append(arg)
        if arg in _SECRET_FLAGS:
            hide_next = True
    return redacted


def redact_url(url: str) -> str:
    """Mask a bot token embedded in a Bot API URL"""
    return _BOT_TOKEN_RE.sub(f"/bot{_REDACTED}", url)


def add_request_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """
    Add request_id to log entries from context variable

    Args:
        logger: The logger instance
        method_name: The logging method name
        event_dict: The event dictionary

    Returns:
        Updated event dictionary with request_id
    """
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id
    return event_dict


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure structured logging with structlog

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "console")
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=numeric_level,
    )

    # Shared processors for all formats
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_request_id,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Set request_id in context variable

    Args:
        request_id: Optional request ID, generates one if not provided

    Returns:
        The request_id that was set
    """
    if request_id is None:
        request_id = f"req_{uuid4().hex[:12]}"
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    """Get current request_id from context variable"""
    return request_id_var.get()


def clear_request_id() -> None:
    """Clear request_id from context variable"""
    request_id_var.set(None)
