"""
Budget Module Triggers - Automatic Ledger Health Monitoring

Triggers evaluate budget state and emit reflex events (warnings) on the
ledger-monitor stream. They never change a budget.

NOTE: These should NEVER fire if the write path is correct. If one does,
it points at a missed event, a hand-edited database or a bug in a
handler - exactly the things an auditor wants to hear about first.
"""

from decimal import Decimal
from typing import Callable

from fund_ledger.budget.events import BudgetOverspendDetected, LedgerDriftDetected
from fund_ledger.budget.models import Budget
from fund_ledger.kernel.events import Event, StreamWriter
from fund_ledger.kernel.money import ZERO

MONITOR_STREAM_ID = "ledger-monitor"
MONITOR_STREAM_TYPE = "monitor"


def evaluate_drift_trigger(
    writer: StreamWriter,
    budgets: list[Budget],
    replay: Callable[[str], Budget | None],
) -> list[Event]:
    """
    Check every budget's ledger invariants

    Three checks per budget:
    - projection_mismatch: the read model disagrees with a fresh replay
      of the stream (version, status or disbursed amount)
    - negative_disbursed: reversals exceed disbursements
    - disbursed_exceeds_allocation: more paid out than the effective allocation

    Args:
        writer: Monitor-stream writer to emit warnings on
        budgets: Budgets as the read model holds them
        replay: Rebuilds a budget from its stream

    Returns:
        List of LedgerDriftDetected events
    """
    events: list[Event] = []

    for budget in budgets:
        fresh = replay(budget.budget_id)
        if fresh is None:
            events.append(
                _drift(writer, budget.budget_id, "projection_mismatch", "deleted", budget.status.value)
            )
            continue

        cached = (budget.version, budget.status.value, budget.disbursed_amount())
        actual = (fresh.version, fresh.status.value, fresh.disbursed_amount())
        if cached != actual:
            events.append(
                _drift(
                    writer,
                    budget.budget_id,
                    "projection_mismatch",
                    expected=_describe(*actual),
                    actual=_describe(*cached),
                )
            )

        disbursed = fresh.disbursed_amount()
        effective = fresh.effective_allocation()
        if disbursed < ZERO:
            events.append(
                _drift(writer, fresh.budget_id, "negative_disbursed", str(ZERO), str(disbursed))
            )
        if fresh.is_funded() and disbursed > effective:
            events.append(
                _drift(
                    writer,
                    fresh.budget_id,
                    "disbursed_exceeds_allocation",
                    str(effective),
                    str(disbursed),
                )
            )

    return events


def evaluate_overspend_trigger(writer: StreamWriter, budgets: list[Budget]) -> list[Event]:
    """
    Spend may exceed the effective allocation only while a pending
    supplementary request covers the excess

    Args:
        writer: Monitor-stream writer to emit warnings on
        budgets: Funded budgets to check

    Returns:
        List of BudgetOverspendDetected events
    """
    events: list[Event] = []

    for budget in budgets:
        spent = budget.spent_amount()
        effective = budget.effective_allocation()
        pending = budget.pending_supplementary_total()
        if spent > effective + pending:
            events.append(
                writer.emit(
                    "BudgetOverspendDetected",
                    BudgetOverspendDetected(
                        budget_id=budget.budget_id,
                        spent_amount=spent,
                        effective_allocation=effective,
                        pending_supplementary=pending,
                        overspend=spent - effective - pending,
                        detected_at=writer.occurred_at,
                    ),
                )
            )

    return events


def _drift(writer: StreamWriter, budget_id: str, check: str, expected: str, actual: str) -> Event:
    return writer.emit(
        "LedgerDriftDetected",
        LedgerDriftDetected(
            budget_id=budget_id,
            check=check,
            expected=expected,
            actual=actual,
            detected_at=writer.occurred_at,
        ),
    )


def _describe(version: int, status: str, disbursed: Decimal) -> str:
    return f"version={version} status={status} disbursed={disbursed}"
