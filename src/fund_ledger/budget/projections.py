"""
Budget Module Projections - Read Models for Query Operations

Projections are built from events and provide efficient query access.
They are the "read" side of CQRS. Handlers never decide against them:
every write reloads its stream. The registry exists for listings, the
admin queue, the pending-budget count and the reconciliation tick.

BudgetRegistry: Folded state of every live budget (main projection)
LedgerHealthProjection: Drift and overspend warnings raised by the tick
"""

from datetime import datetime

from fund_ledger.budget.aggregate import apply_budget_event
from fund_ledger.budget.handlers import BUDGET_STREAM_TYPE
from fund_ledger.budget.models import (
    Budget,
    BudgetStatus,
    SupplementaryBudget,
    SupplementaryStatus,
    Transaction,
)
from fund_ledger.kernel.events import Event


class BudgetRegistry:
    """
    Main budget projection - current state of all budgets

    Built by applying every budget-stream event through the same fold the
    aggregate uses, so the registry and a fresh replay can only disagree
    if an event was missed (which the tick checks for).

    Query methods return deep copies; callers can't corrupt the projection.
    """

    def __init__(self) -> None:
        self.budgets: dict[str, Budget] = {}
        self.position = 0

    def apply_event(self, event: Event) -> None:
        """
        Apply an event to update the projection

        Args:
            event: Committed event (events of other streams are ignored)
        """
        if event.position is not None:
            self.position = max(self.position, event.position)
        if event.stream_type != BUDGET_STREAM_TYPE:
            return

        budget = apply_budget_event(self.budgets.get(event.stream_id), event)
        if budget is None or budget.deleted:
            self.budgets.pop(event.stream_id, None)
        else:
            self.budgets[event.stream_id] = budget

    # ========== Query Methods ==========

    def owner_of(self, budget_id: str) -> str | None:
        budget = self.budgets.get(budget_id)
        return budget.owner_id if budget else None

    def list_all(self) -> list[Budget]:
        return [b.model_copy(deep=True) for b in self.budgets.values()]

    def list_budgets(
        self,
        owner_id: str | None = None,
        status: BudgetStatus | None = None,
    ) -> list[Budget]:
        """
        List budgets, newest first

        Args:
            owner_id: Only budgets owned by this user
            status: Only budgets in this status
        """
        budgets = [
            b
            for b in self.budgets.values()
            if (owner_id is None or b.owner_id == owner_id)
            and (status is None or b.status == status)
        ]
        budgets.sort(key=lambda b: b.created_at, reverse=True)
        return [b.model_copy(deep=True) for b in budgets]

    def list_funded(self) -> list[Budget]:
        """APPROVED, PARTIALLY_DISBURSED and DISBURSED budgets"""
        return [b.model_copy(deep=True) for b in self.budgets.values() if b.is_funded()]

    def count_pending(self, owner_id: str) -> int:
        """PENDING budgets held by an owner (the submission limit counts these)"""
        return sum(
            1
            for b in self.budgets.values()
            if b.owner_id == owner_id and b.status == BudgetStatus.PENDING
        )

    def admin_queue(self) -> list[Budget]:
        """
        PENDING budgets in review order

        EMERGENCY before URGENT before NORMAL before LONG_TERM; within a
        priority, the longest-waiting budget first.
        """
        pending = [b for b in self.budgets.values() if b.status == BudgetStatus.PENDING]
        pending.sort(key=lambda b: (b.priority.rank(), b.submitted_at or b.created_at))
        return [b.model_copy(deep=True) for b in pending]

    def list_pending_supplementaries(self) -> list[tuple[str, SupplementaryBudget]]:
        """(budget_id, request) pairs awaiting an admin decision, oldest first"""
        found = [
            (budget.budget_id, s.model_copy())
            for budget in self.budgets.values()
            for s in budget.supplementaries.values()
            if s.status == SupplementaryStatus.PENDING
        ]
        found.sort(key=lambda pair: pair[1].requested_at)
        return found

    def budget_for_supplementary(self, supplementary_id: str) -> str | None:
        for budget in self.budgets.values():
            if supplementary_id in budget.supplementaries:
                return budget.budget_id
        return None

    def budget_for_expenditure(self, expenditure_id: str) -> str | None:
        for budget in self.budgets.values():
            if expenditure_id in budget.expenditures:
                return budget.budget_id
        return None

    def pending_settlements(self) -> list[tuple[str, Transaction]]:
        """(budget_id, transaction) for every PENDING disbursement"""
        return [
            (budget.budget_id, t.model_copy())
            for budget in self.budgets.values()
            for t in budget.pending_transactions()
        ]

    def stale_settlements(self, cutoff: datetime) -> list[tuple[str, Transaction]]:
        """PENDING disbursements initiated before cutoff"""
        return [
            (budget_id, t) for budget_id, t in self.pending_settlements() if t.created_at < cutoff
        ]


class LedgerHealthProjection:
    """
    Ledger health monitoring - drift and overspend warnings

    Built from events: LedgerDriftDetected, BudgetOverspendDetected

    Query method: get_warnings
    """

    def __init__(self) -> None:
        self.drift_incidents: list[dict] = []
        self.overspend_incidents: list[dict] = []

    def apply_event(self, event: Event) -> None:
        """
        Apply an event to update the projection

        Args:
            event: Event to apply
        """
        if event.event_type == "LedgerDriftDetected":
            self.drift_incidents.append(dict(event.payload))
        elif event.event_type == "BudgetOverspendDetected":
            self.overspend_incidents.append(dict(event.payload))

    # ========== Query Methods ==========

    def get_warnings(self, budget_id: str | None = None) -> dict:
        """
        Get all warnings

        Args:
            budget_id: Optional budget ID to filter by

        Returns:
            Dict with drift_incidents and overspend_incidents
        """
        if budget_id is None:
            return {
                "drift_incidents": list(self.drift_incidents),
                "overspend_incidents": list(self.overspend_incidents),
            }
        return {
            "drift_incidents": [w for w in self.drift_incidents if w["budget_id"] == budget_id],
            "overspend_incidents": [
                w for w in self.overspend_incidents if w["budget_id"] == budget_id
            ],
        }
