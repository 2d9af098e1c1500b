"""
Tests for the drift and overspend triggers

Triggers only read budget state, so these feed them hand-made copies of
real budgets and check which warnings come out.
"""

from decimal import Decimal

from fund_ledger.budget.models import Budget
from fund_ledger.budget.triggers import (
    MONITOR_STREAM_ID,
    MONITOR_STREAM_TYPE,
    evaluate_drift_trigger,
    evaluate_overspend_trigger,
)
from fund_ledger.kernel.authz import Actor
from fund_ledger.kernel.events import StreamWriter
from fund_ledger.kernel.ids import generate_id
from fund_ledger.ledger import FundLedger


def monitor_writer(ledger: FundLedger) -> StreamWriter:
    return StreamWriter(
        stream_id=MONITOR_STREAM_ID,
        stream_type=MONITOR_STREAM_TYPE,
        current_version=0,
        command_id="tick:test",
        actor_id="system",
        occurred_at=ledger.time_provider.now(),
        id_factory=generate_id,
    )


def test_healthy_budget_raises_nothing(funded_ledger: FundLedger, approved_budget: Budget) -> None:
    writer = monitor_writer(funded_ledger)

    drift = evaluate_drift_trigger(
        writer, [approved_budget], lambda budget_id: funded_ledger.get_budget(budget_id)
    )
    overspend = evaluate_overspend_trigger(writer, [approved_budget])

    assert drift == []
    assert overspend == []


def test_projection_mismatch_is_reported(
    funded_ledger: FundLedger, approved_budget: Budget
) -> None:
    """A read model that disagrees with the stream is drift"""
    stale = approved_budget.model_copy(update={"version": approved_budget.version - 1})

    events = evaluate_drift_trigger(
        monitor_writer(funded_ledger), [stale], lambda budget_id: funded_ledger.get_budget(budget_id)
    )

    assert [e.event_type for e in events] == ["LedgerDriftDetected"]
    assert events[0].payload["check"] == "projection_mismatch"
    assert events[0].payload["budget_id"] == approved_budget.budget_id


def test_disbursed_beyond_allocation_is_reported(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    funded_ledger.disburse(admin, approved_budget.budget_id, "80000")
    shrunk = funded_ledger.get_budget(approved_budget.budget_id).model_copy(
        update={"allocated_amount": Decimal("50000.00")}
    )

    events = evaluate_drift_trigger(monitor_writer(funded_ledger), [shrunk], lambda _: shrunk)

    assert [e.payload["check"] for e in events] == ["disbursed_exceeds_allocation"]
    assert events[0].payload["expected"] == "50000.00"
    assert events[0].payload["actual"] == "80000.00"


def test_overspend_without_supplementary_is_reported(
    funded_ledger: FundLedger, approved_budget: Budget, owner: Actor
) -> None:
    item_id = next(iter(approved_budget.items))
    funded_ledger.post_expenditure(
        owner,
        approved_budget.budget_id,
        title="Textbook order",
        items=[{"budget_item_id": item_id, "spent_amount": "60000"}],
    )
    shrunk = funded_ledger.get_budget(approved_budget.budget_id).model_copy(
        update={"allocated_amount": Decimal("40000.00")}
    )

    events = evaluate_overspend_trigger(monitor_writer(funded_ledger), [shrunk])

    assert [e.event_type for e in events] == ["BudgetOverspendDetected"]
    assert Decimal(events[0].payload["overspend"]) == Decimal("20000.00")


def test_pending_supplementary_covers_overspend(
    funded_ledger: FundLedger, approved_budget: Budget, owner: Actor
) -> None:
    """Spend past the allocation is fine while a request covers the excess"""
    item_id = next(iter(approved_budget.items))
    funded_ledger.post_expenditure(
        owner,
        approved_budget.budget_id,
        title="Textbook order",
        items=[{"budget_item_id": item_id, "spent_amount": "90000"}],
        request_supplementary=True,
    )

    budget = funded_ledger.get_budget(approved_budget.budget_id)
    assert budget.spent_amount() > budget.effective_allocation()
    assert evaluate_overspend_trigger(monitor_writer(funded_ledger), [budget]) == []
