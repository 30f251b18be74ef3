"""
Structured Logging Configuration with structlog
"""

import logging
import sys
from typing import Any, Optional

import structlog


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """
    Configure structlog for JSON structured logging

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "console")
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors = shared_processors + [
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all log messages in current context

    Replaces whatever the previous event bound.

    Args:
        **kwargs: Key-value pairs to add to log context (event_id, document_id)
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def log_anonymized_record(
    logger: structlog.stdlib.BoundLogger,
    event_id: str,
    operation: str,
    record_id: str,
    duration_ms: float,
) -> None:
    """
    Log a successfully anonymized and written record (audit trail)

    Only identifiers are logged, never source field values.

    Args:
        logger: Structlog logger
        event_id: Change event ID for correlation
        operation: insert or update
        record_id: Customer identity
        duration_ms: Time spent anonymizing and writing
    """
    logger.info(
        "record_anonymized",
        event_id=event_id,
        operation=operation,
        record_id=record_id,
        duration_ms=round(duration_ms, 2),
    )


def log_event_failure(
    logger: structlog.stdlib.BoundLogger,
    event_id: str,
    operation: str,
    document_id: Optional[str],
    error: BaseException,
) -> None:
    """
    Log a change event that failed at the per-event boundary

    Args:
        logger: Structlog logger
        event_id: Change event ID
        operation: Operation type of the event
        document_id: Identity of the affected document, if known
        error: The exception that stopped processing
    """
    logger.error(
        "event_processing_failed",
        event_id=event_id,
        operation=operation,
        document_id=document_id,
        error_type=type(error).__name__,
        error=str(error),
    )
