"""
Structured logging configuration using structlog.

- Console output while developing, JSON lines in production
- Correlation IDs for following one request through the lifecycle
- Sensitive data filtering (SMTP credentials, webhook URLs)
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, cast

import structlog
from structlog.types import EventDict, Processor

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "smtp_password",
        "api_key",
        "secret",
        "token",
        "webhook_url",
        "chat_webhook_url",
    }
)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """
    Set correlation ID for the current context.

    Args:
        correlation_id: Custom correlation ID. If None, generates a new UUID.

    Returns:
        The correlation ID that was set.
    """
    if correlation_id is None:
        correlation_id = str(uuid.uuid4())
    _correlation_id_var.set(correlation_id)
    return correlation_id


def get_correlation_id() -> str | None:
    return _correlation_id_var.get()


def add_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add the contextvar correlation ID to every log entry."""
    if "correlation_id" not in event_dict:
        event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def filter_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Redact credentials before they reach any renderer."""
    for key in SENSITIVE_KEYS:
        if key in event_dict:
            event_dict[key] = "***REDACTED***"
    return event_dict


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    from quotetrack import __version__

    event_dict["app"] = "quotetrack"
    event_dict["version"] = __version__
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    dev_mode: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_logs: Whether to output JSON logs (recommended for production)
        dev_mode: Whether to use development-friendly output
    """
    shared_processors: list[Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_correlation_id,
        add_app_context,
        filter_sensitive_data,
    ]

    if json_logs:
        processors = shared_processors + [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(),
        ]
    elif dev_mode:
        processors = shared_processors + [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        processors = shared_processors + [
            structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"]),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def configure_from_settings(settings: Any) -> None:
    """Apply ``log_level``/``json_logs``/``debug`` from a Settings instance."""
    configure_logging(
        log_level="DEBUG" if settings.debug else settings.log_level,
        json_logs=settings.json_logs,
        dev_mode=not settings.json_logs,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("transition_recorded", quote_id="q-1", kind="signed")
    """
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))


class LogPerformance:
    """
    Context manager for logging operation duration.

    Usage:
        with LogPerformance("reconcile_all", logger):
            ...
    """

    def __init__(self, operation: str, logger: structlog.stdlib.BoundLogger):
        self.operation = operation
        self.logger = logger
        self.start_time: float = 0

    def __enter__(self) -> "LogPerformance":
        import time

        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation}_started")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        import time

        duration = time.perf_counter() - self.start_time

        if exc_type is None:
            self.logger.info(
                f"{self.operation}_completed",
                duration_ms=round(duration * 1000, 2),
                operation=self.operation,
            )
        else:
            self.logger.error(
                f"{self.operation}_failed",
                duration_ms=round(duration * 1000, 2),
                operation=self.operation,
                error=str(exc_val),
                error_type=exc_type.__name__ if exc_type else None,
            )


# Audit logging helpers
def log_quote_created(
    logger: structlog.stdlib.BoundLogger,
    quote_id: str,
    client_name: str,
    total: float,
    created_by: str | None,
) -> None:
    """Log quote creation for audit trail."""
    logger.info(
        "quote_created",
        action="create",
        resource="quote",
        quote_id=quote_id,
        client_name=client_name,
        total=total,
        created_by=created_by,
    )


def log_quote_transition(
    logger: structlog.stdlib.BoundLogger,
    quote_id: str,
    kind: str,
    previous_status: str,
    new_status: str,
    event_id: str,
) -> None:
    """Log a recorded lifecycle transition for audit trail."""
    logger.info(
        "quote_transition",
        action="transition",
        resource="quote",
        quote_id=quote_id,
        kind=kind,
        previous_status=previous_status,
        new_status=new_status,
        event_id=event_id,
    )


# Initialize logging on module import
configure_logging()
