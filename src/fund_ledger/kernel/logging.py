"""
Structured logging for the fund ledger.

Every log line is a structlog event dict. A payment callback, the
disbursement it settles and the notification it triggers all log under
one correlation id, so a single grep follows the money. Payment
destinations and credentials are masked before any renderer sees them.

Environment:
    ENVIRONMENT=production      JSON lines instead of coloured console output
    FUND_LEDGER_LOG_LEVEL       DEBUG, INFO (default), WARNING, ...
"""

import contextvars
import logging
import os
import secrets
import sys
import time
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from fund_ledger.kernel.errors import LedgerError

correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "correlation_id", default=""
)

# Payment details and credentials never reach a log sink
REDACTED_FIELDS = frozenset(
    {
        "destination",
        "account_number",
        "phone_number",
        "password",
        "token",
        "secret",
        "api_key",
        "private_key",
    }
)
REDACTED = "***REDACTED***"


def generate_correlation_id() -> str:
    """22 URL-safe characters, 128 bits of randomness"""
    return secrets.token_urlsafe(16)


def get_correlation_id() -> str:
    """Current correlation id, minting one on first use in this context"""
    cid = correlation_id_var.get()
    if not cid:
        cid = generate_correlation_id()
        correlation_id_var.set(cid)
    return cid


def is_production() -> bool:
    return os.getenv("ENVIRONMENT", "development").lower() == "production"


def redact_context(context: dict[str, Any]) -> dict[str, Any]:
    """
    Mask sensitive values in a log context

    Example:
        >>> redact_context({"destination": "0712345678", "amount": "500.00"})
        {"destination": "***REDACTED***", "amount": "500.00"}
    """
    return {k: REDACTED if k in REDACTED_FIELDS else v for k, v in context.items()}


def _add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


def _redact_sensitive(
    logger: logging.Logger, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    return redact_context(event_dict)


def configure_logging(
    *,
    json_output: bool | None = None,
    log_level: str | None = None,
) -> None:
    """
    Configure structlog on top of stdlib logging (stderr).

    Args:
        json_output: JSON lines if True, console if False; None follows ENVIRONMENT
        log_level: Level name; None follows FUND_LEDGER_LOG_LEVEL (default INFO)
    """
    if json_output is None:
        json_output = is_production()
    level_name = (log_level or os.getenv("FUND_LEDGER_LOG_LEVEL", "INFO")).upper()

    # stdout is reserved for CLI output
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level_name))
    logging.getLogger("werkzeug").setLevel(logging.WARNING)

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_correlation_id,
        _redact_sensitive,
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors += [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def correlation_scope(correlation_id: str | None = None, **bound: Any) -> Iterator[str]:
    """
    Run a block under a given (or fresh) correlation id

    Extra keyword arguments (budget_id, transaction_id, ...) are bound to
    every log line emitted inside the block. Both are restored on exit.

    Payment callbacks pass their settlement command id here, so the
    settlement and everything it triggers log under an id derived from
    the reference the channel already knows.
    """
    token = correlation_id_var.set(correlation_id or generate_correlation_id())
    try:
        with structlog.contextvars.bound_contextvars(**bound):
            yield correlation_id_var.get()
    finally:
        correlation_id_var.reset(token)


class LogOperation:
    """
    Log the start, outcome and duration of one ledger operation.

    Business rejections (any LedgerError, e.g. InsufficientAllocation) are
    logged at WARNING with the reason. Anything else is an ERROR, with a
    stack trace outside production. The exception always propagates.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        **context: Any,
    ):
        """
        Args:
            logger: Structured logger instance
            operation: Operation name (e.g., "approve_budget", "settle")
            **context: Ids to attach to every line (budget_id, actor_id, ...)
        """
        self.logger = logger.bind(operation=operation, **context)
        self.operation = operation
        self.start_time = 0.0

    def __enter__(self) -> "LogOperation":
        self.start_time = time.perf_counter()
        self.logger.debug(f"{self.operation} started")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        duration_ms = round((time.perf_counter() - self.start_time) * 1000, 2)

        if exc_type is None:
            self.logger.info(f"{self.operation} completed", duration_ms=duration_ms)
        elif isinstance(exc_val, LedgerError):
            self.logger.warning(
                f"{self.operation} rejected",
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                reason=str(exc_val),
            )
        else:
            self.logger.error(
                f"{self.operation} failed",
                duration_ms=duration_ms,
                error_type=exc_type.__name__,
                exc_info=not is_production(),
            )
