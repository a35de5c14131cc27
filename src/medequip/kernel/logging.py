"""
Structured logging for the marketplace engine.

structlog over stdlib logging: console output in development, JSON in
production. Correlation ids tie together the log lines of one command;
they never carry caller identity, which is always passed explicitly.
"""

import contextvars
import logging
import os
import secrets
import sys
import time
from typing import Any

import structlog

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Personal and financial fields never written to logs in clear text
REDACTED_FIELDS = frozenset(
    {
        "actor_id",
        "user_id",
        "target_user_id",
        "email",
        "amount",
        "refund_amount",
        "token",
        "password",
        "secret",
    }
)

REDACTED = "***REDACTED***"


def get_correlation_id() -> str:
    """Get the current correlation ID, generating one on first use."""
    cid = correlation_id_var.get()
    if not cid:
        cid = secrets.token_urlsafe(16)
        correlation_id_var.set(cid)
    return cid


def set_correlation_id(correlation_id: str) -> None:
    """Set the correlation ID for the current context."""
    correlation_id_var.set(correlation_id)


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor adding the correlation ID to every line."""
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def configure_logging(
    *,
    json_output: bool = False,
    log_level: str = "INFO",
) -> None:
    """
    Configure structured logging for the application.

    Args:
        json_output: JSON lines (production) instead of console rendering
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
    """
    level = getattr(logging, log_level.upper())

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
    )
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger (name is typically __name__)."""
    return structlog.get_logger(name)


def is_production() -> bool:
    """True when ENVIRONMENT=production."""
    return os.getenv("ENVIRONMENT", "development").lower() == "production"


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Replace sensitive values before they reach a log line.

    Example:
        >>> redact_context({"email": "a@b.vn", "quote_id": "q1"})
        {'email': '***REDACTED***', 'quote_id': 'q1'}
    """
    return {k: REDACTED if k in REDACTED_FIELDS else v for k, v in context.items()}


class LogOperation:
    """Context manager logging an operation's start, outcome and duration."""

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.context = redact_context(context)
        self.start_time: float = 0.0

    def __enter__(self) -> "LogOperation":
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation} started", operation=self.operation, **self.context)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type is None:
            self.logger.info(
                f"{self.operation} completed",
                operation=self.operation,
                duration_ms=duration_ms,
                **self.context,
            )
            return

        # Rejections carry a code; those are expected outcomes, not crashes
        code = getattr(exc_val, "code", None)
        if code is not None:
            self.logger.warning(
                f"{self.operation} rejected",
                operation=self.operation,
                duration_ms=duration_ms,
                error_code=code,
                **self.context,
            )
        else:
            self.logger.error(
                f"{self.operation} failed",
                operation=self.operation,
                duration_ms=duration_ms,
                exc_info=not is_production(),
                **self.context,
            )
