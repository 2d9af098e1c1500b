"""
TickEngine - Periodic reconciliation orchestrator

The TickEngine runs the ledger's housekeeping loop. It's called
periodically (e.g., every few minutes from cron) to:

1. Reconcile PENDING disbursements whose settlement never arrived
2. Check every budget's ledger invariants against a fresh replay
3. Record any warnings on the ledger-monitor stream

No background process owns ledger state: a tick is just another
short-lived unit of work, serialized like any other write.

Fun fact: This is like a bank's end-of-day reconciliation - the books
are balanced against the ledger, and anything that doesn't tie out gets
written down for someone to look at in the morning.
"""

from datetime import datetime
from typing import Callable

from fund_ledger.budget.aggregate import replay_budget
from fund_ledger.budget.models import Transaction
from fund_ledger.budget.projections import BudgetRegistry
from fund_ledger.budget.triggers import (
    MONITOR_STREAM_ID,
    MONITOR_STREAM_TYPE,
    evaluate_drift_trigger,
    evaluate_overspend_trigger,
)
from fund_ledger.kernel.audit import audit_entries_for
from fund_ledger.kernel.errors import LedgerError
from fund_ledger.kernel.event_store import SQLiteEventStore
from fund_ledger.kernel.events import Event, StreamWriter
from fund_ledger.kernel.ids import generate_id
from fund_ledger.kernel.logging import LogOperation, get_logger
from fund_ledger.kernel.metrics import invariant_warnings_total, tick_execution_duration_seconds
from fund_ledger.kernel.policy import LedgerPolicy
from fund_ledger.kernel.retry import retry_on_version_conflict
from fund_ledger.kernel.time import TimeProvider, settlement_cutoff

logger = get_logger(__name__)

WARNING_TYPES = frozenset({"LedgerDriftDetected", "BudgetOverspendDetected"})

# Settles one stale transaction; returns the events it committed
Reconciler = Callable[[str, Transaction], list[Event]]


class TickResult:
    """
    Result of a tick evaluation

    Contains the settlements committed and the warnings raised.
    """

    def __init__(
        self,
        tick_id: str,
        tick_at: datetime,
        reconciled_events: list[Event],
        triggered_events: list[Event],
        reconcile_errors: list[str] | None = None,
    ):
        self.tick_id = tick_id
        self.tick_at = tick_at
        self.reconciled_events = reconciled_events
        self.triggered_events = triggered_events
        self.reconcile_errors = reconcile_errors or []

    def has_warnings(self) -> bool:
        """Check if any ledger warnings were raised"""
        return any(e.event_type in WARNING_TYPES for e in self.triggered_events)

    def summary(self) -> str:
        """Human-readable summary of tick result"""
        parts = [
            f"Tick {self.tick_id} at {self.tick_at}",
            f"Reconciled: {len(self.reconciled_events)}",
            f"Warnings: {len(self.triggered_events)}",
        ]
        if self.reconcile_errors:
            parts.append(f"Reconcile errors: {len(self.reconcile_errors)}")
        if self.has_warnings():
            parts.append("Ledger warnings detected")
        return " | ".join(parts)


class TickEngine:
    """
    Orchestrates periodic reconciliation

    The TickEngine:
    1. Finds PENDING disbursements older than the settlement timeout
    2. Hands each to the reconciler (re-query the channel, or fail it)
    3. Evaluates drift and overspend triggers
    4. Appends any warnings to the ledger-monitor stream
    5. Returns summary result
    """

    def __init__(
        self,
        event_store: SQLiteEventStore,
        time_provider: TimeProvider,
        policy: LedgerPolicy,
        id_factory: Callable[[], str] = generate_id,
    ):
        self.event_store = event_store
        self.time_provider = time_provider
        self.policy = policy
        self.id_factory = id_factory

    def tick(self, budget_registry: BudgetRegistry, reconcile: Reconciler) -> TickResult:
        """
        Execute a single tick evaluation

        Args:
            budget_registry: Current budget read model (caught up by the caller)
            reconcile: Settles one stale transaction, returning committed events

        Returns:
            TickResult with settlements and warnings
        """
        now = self.time_provider.now()
        tick_id = self.id_factory()

        with tick_execution_duration_seconds.time(), LogOperation(
            logger, "tick_evaluation", tick_id=tick_id
        ):
            cutoff = settlement_cutoff(now, self.policy.settlement_timeout)
            stale = budget_registry.stale_settlements(cutoff)
            logger.debug(
                "Stale settlements found",
                tick_id=tick_id,
                stale_count=len(stale),
                cutoff=cutoff.isoformat(),
            )

            reconciled: list[Event] = []
            errors: list[str] = []
            for budget_id, transaction in stale:
                try:
                    reconciled.extend(reconcile(budget_id, transaction))
                except LedgerError as e:
                    # One stuck transaction must not block the rest of the sweep
                    logger.warning(
                        "Reconciliation failed for transaction",
                        tick_id=tick_id,
                        budget_id=budget_id,
                        transaction_id=transaction.transaction_id,
                        error_type=type(e).__name__,
                        reason=str(e),
                    )
                    errors.append(f"{transaction.transaction_id}: {e}")

            triggered = self._record_warnings(tick_id, now, budget_registry)

            for event in triggered:
                invariant_warnings_total.labels(warning_type=event.event_type).inc()

            logger.info(
                "Tick evaluation completed",
                tick_id=tick_id,
                reconciled_count=len(reconciled),
                warnings_count=len(triggered),
                reconcile_errors=len(errors),
            )

        return TickResult(
            tick_id=tick_id,
            tick_at=now,
            reconciled_events=reconciled,
            triggered_events=triggered,
            reconcile_errors=errors,
        )

    def _record_warnings(
        self, tick_id: str, now: datetime, budget_registry: BudgetRegistry
    ) -> list[Event]:
        def replay(budget_id: str):
            return replay_budget(self.event_store.load_stream(budget_id))

        @retry_on_version_conflict(self.policy.max_conflict_retries)
        def attempt() -> list[Event]:
            writer = StreamWriter(
                stream_id=MONITOR_STREAM_ID,
                stream_type=MONITOR_STREAM_TYPE,
                current_version=self.event_store.get_stream_version(MONITOR_STREAM_ID),
                command_id=f"tick:{tick_id}",
                actor_id="system",
                occurred_at=now,
                id_factory=self.id_factory,
            )
            evaluate_drift_trigger(writer, budget_registry.list_all(), replay)
            evaluate_overspend_trigger(writer, budget_registry.list_funded())
            if not writer.events:
                return []
            return self.event_store.append_many(writer.events, audit_entries_for(writer.events))

        return attempt()
