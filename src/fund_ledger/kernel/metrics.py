"""
Prometheus metrics collection for the fund ledger.

Provides observability into ledger operations, money movement and health.
"""

import time
from collections.abc import Callable
from decimal import Decimal
from functools import wraps
from typing import ParamSpec, TypeVar

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from fund_ledger.kernel.errors import LedgerError

# ============================================================================
# Core Event Store Metrics
# ============================================================================

events_appended_total = Counter(
    "fund_ledger_events_appended_total",
    "Total number of events appended to the event store",
    ["stream_type", "event_type"],
)

events_loaded_total = Counter(
    "fund_ledger_events_loaded_total",
    "Total number of events loaded from the event store",
    ["stream_type"],
)

stream_version_conflicts_total = Counter(
    "fund_ledger_stream_version_conflicts_total",
    "Total number of optimistic locking version conflicts",
    ["stream_type"],
)

# ============================================================================
# Command Processing Metrics
# ============================================================================

command_duration_seconds = Histogram(
    "fund_ledger_command_duration_seconds",
    "Duration of command processing in seconds",
    ["command_type"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

commands_processed_total = Counter(
    "fund_ledger_commands_processed_total",
    "Total number of commands processed",
    ["command_type", "status"],  # status: success, rejected, failure
)

# ============================================================================
# Money Movement Metrics
# ============================================================================

disbursements_total = Counter(
    "fund_ledger_disbursements_total",
    "Disbursement transactions by method and outcome",
    ["method", "outcome"],  # outcome: completed, pending, failed, cancelled
)

settlement_replays_ignored_total = Counter(
    "fund_ledger_settlement_replays_ignored_total",
    "Settlement callbacks ignored because the transaction was no longer PENDING",
)

pending_settlements = Gauge(
    "fund_ledger_pending_settlements",
    "Disbursements waiting for a payment channel settlement",
)

fund_pool_balance = Gauge(
    "fund_ledger_fund_pool_balance",
    "Current fund pool balance (uncommitted capacity)",
)

# ============================================================================
# Side Channel Metrics
# ============================================================================

notifications_sent_total = Counter(
    "fund_ledger_notifications_sent_total",
    "Notifications handed to the dispatcher",
    ["notification_type"],
)

notifications_failed_total = Counter(
    "fund_ledger_notifications_failed_total",
    "Notifications the dispatcher failed to deliver (never fatal)",
    ["notification_type"],
)

# ============================================================================
# System Metrics
# ============================================================================

tick_execution_duration_seconds = Histogram(
    "fund_ledger_tick_execution_duration_seconds",
    "Duration of tick execution in seconds",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
)

invariant_warnings_total = Counter(
    "fund_ledger_invariant_warnings_total",
    "Ledger invariant warnings raised by the reconciliation tick",
    ["warning_type"],
)

# ============================================================================
# Helper Functions
# ============================================================================

P = ParamSpec("P")
R = TypeVar("R")


def track_command_duration(command_type: str) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to track command processing duration.

    Business rejections (LedgerError) are counted as "rejected" so they
    don't drown out genuine failures on dashboards.

    Args:
        command_type: Type of command being processed

    Returns:
        Decorated function that tracks duration
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            status = "success"
            try:
                result = func(*args, **kwargs)
                return result
            except LedgerError:
                status = "rejected"
                raise
            except Exception:
                status = "failure"
                raise
            finally:
                duration = time.perf_counter() - start
                command_duration_seconds.labels(command_type=command_type).observe(duration)
                commands_processed_total.labels(
                    command_type=command_type, status=status
                ).inc()

        return wrapper

    return decorator


def start_metrics_server(port: int = 9090) -> None:
    """
    Start Prometheus metrics HTTP server.

    Args:
        port: Port to listen on (default: 9090)
    """
    start_http_server(port)


def update_ledger_gauges(pool_balance: Decimal, pending_count: int) -> None:
    """
    Update point-in-time ledger gauges.

    Args:
        pool_balance: Current fund pool balance
        pending_count: Disbursements awaiting settlement across all budgets
    """
    fund_pool_balance.set(float(pool_balance))
    pending_settlements.set(pending_count)
