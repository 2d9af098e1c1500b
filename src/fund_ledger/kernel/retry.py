"""
Retry policies for ledger writes (tenacity)

Two kinds of contention are expected:
- SQLite lock contention ("database is locked" / "busy") under concurrent writers
- Stream version conflicts, when two requests race on the same budget or
  on the fund pool. The loser reloads the stream and re-validates, so a
  disbursement that no longer fits fails with InsufficientAllocation
  instead of overshooting.

Any other database error is not retried.
"""

import sqlite3
from collections.abc import Callable
from typing import TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random_exponential,
)

from fund_ledger.kernel.errors import StreamVersionConflict
from fund_ledger.kernel.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

LOCK_MESSAGES = ("database is locked", "database table is locked", "busy")


def is_lock_contention(error: BaseException) -> bool:
    """True for SQLite errors another writer's lock would explain"""
    if not isinstance(error, sqlite3.OperationalError):
        return False
    message = str(error).lower()
    return any(fragment in message for fragment in LOCK_MESSAGES)


def _log_attempt(message: str, level: str = "warning") -> Callable[[RetryCallState], None]:
    def before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        getattr(logger, level)(message, attempt=state.attempt_number, error=str(error))

    return before_sleep


def retry_on_sqlite_lock(
    max_attempts: int = 5,
    min_wait_ms: int = 50,
    max_wait_ms: int = 1000,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry a write that lost the SQLite write lock.

    Args:
        max_attempts: Maximum number of attempts
        min_wait_ms: First backoff in milliseconds
        max_wait_ms: Backoff ceiling in milliseconds

    Returns:
        Decorator; the final lock error is re-raised unchanged
    """
    return retry(
        retry=retry_if_exception(is_lock_contention),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait_ms / 1000.0, max=max_wait_ms / 1000.0),
        before_sleep=_log_attempt("SQLite lock contention, retrying"),
        reraise=True,
    )


def retry_on_version_conflict(
    max_attempts: int = 25,
    max_wait_ms: int = 50,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Retry a command whose stream moved underneath it.

    The decorated function must rebuild its events from freshly loaded
    state on every call; the reload is what turns a lost race into a
    correct decision. Waits are jittered so racing writers don't collide
    in lockstep.

    Args:
        max_attempts: Maximum number of attempts
        max_wait_ms: Upper bound of the random wait between attempts

    Example:
        @retry_on_version_conflict()
        def attempt():
            budget = load_budget(budget_id)
            events = handlers.handle_disburse(command, ..., budget)
            return event_store.append_many(events)
    """
    return retry(
        retry=retry_if_exception_type(StreamVersionConflict),
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=0.005, max=max_wait_ms / 1000.0),
        before_sleep=_log_attempt("Stream version conflict, reloading", level="info"),
        reraise=True,
    )
