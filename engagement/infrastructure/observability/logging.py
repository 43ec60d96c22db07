"""
Structured logging setup for the engagement engine.
Provides JSON-formatted logs with consistent fields for the API, the
proactive agent and the suggestion worker.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structlog for JSON output on stdout.

    Safe to call more than once; the API and the worker runner each call
    it at startup.
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _add_service_context,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    for noisy in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _add_service_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Tag every entry with the emitting service."""
    event_dict.setdefault("service", "engagement-engine")
    return event_dict


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Structured logger, usually named after the calling module."""
    return structlog.get_logger(name)


def mask_recipient(recipient: str | int | None) -> str:
    """Keep only the last four characters of a phone number or chat id."""
    if recipient is None:
        return "<none>"
    value = str(recipient)
    if len(value) <= 4:
        return "***"
    return f"***{value[-4:]}"


def log_dispatch(channel: str, recipient: str, success: bool, error: str | None = None, **fields):
    """Log a provider send attempt with consistent fields."""
    logger = get_logger("dispatch")

    log_data = {
        "channel": channel,
        "recipient": mask_recipient(recipient),
        "success": success,
        **fields,
    }

    if error:
        log_data["error"] = error

    if success:
        logger.info("Engagement message sent", **log_data)
    else:
        logger.warning("Engagement message failed", **log_data)
