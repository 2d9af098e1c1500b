"""
Tests for the fund pool and the audit trail
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from fund_ledger.budget.models import Budget, BudgetStatus
from fund_ledger.kernel.authz import Actor
from fund_ledger.kernel.errors import (
    InsufficientBalance,
    InsufficientPool,
    InvalidAmount,
    NotAuthorized,
)
from fund_ledger.ledger import FundLedger
from fund_ledger.pool.models import MovementKind


def test_adjust_pool(ledger: FundLedger, admin: Actor) -> None:
    pool = ledger.adjust_pool(admin, "500000", note="Term 1 grant")
    assert pool.balance == Decimal("500000.00")

    pool = ledger.adjust_pool(admin, "-125000.50", note="Returned to treasury")
    assert pool.balance == Decimal("374999.50")


def test_pool_cannot_go_negative(ledger: FundLedger, admin: Actor) -> None:
    ledger.adjust_pool(admin, "1000", note="Float")

    with pytest.raises(InsufficientBalance):
        ledger.adjust_pool(admin, "-1000.01", note="Overdraw")

    assert ledger.pool_balance().balance == Decimal("1000.00")


def test_zero_adjustment_is_refused(ledger: FundLedger, admin: Actor) -> None:
    with pytest.raises(InvalidAmount):
        ledger.adjust_pool(admin, "0", note="Nothing")


def test_only_admin_adjusts_pool(ledger: FundLedger, owner: Actor) -> None:
    with pytest.raises(NotAuthorized):
        ledger.adjust_pool(owner, "100", note="Gift")


def test_pool_history(funded_ledger: FundLedger, approved_budget: Budget, admin: Actor) -> None:
    """Deposit, then the allocation reserved by the approval"""
    history = funded_ledger.pool_history()

    assert [m.kind for m in history] == [MovementKind.DEPOSIT, MovementKind.ALLOCATION]
    assert history[1].delta == Decimal("-80000.00")
    assert history[1].budget_id == approved_budget.budget_id
    assert history[-1].balance_after == Decimal("920000.00")


def test_audit_trail_for_budget(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    """Every event on the budget's stream has exactly one audit row"""
    funded_ledger.disburse(admin, approved_budget.budget_id, "1000")

    entries = funded_ledger.get_audit_trail(budget_id=approved_budget.budget_id)

    assert [e.action for e in entries] == [
        "BUDGET_CREATE",
        "BUDGET_APPROVE",
        "DISBURSEMENT_CREATE",
    ]
    assert entries[-1].entity == "Transaction"
    assert entries[-1].user_id == "alice"


def test_audit_trail_filters(funded_ledger: FundLedger, approved_budget: Budget) -> None:
    by_bob = funded_ledger.get_audit_trail(user_id="bob")
    assert [e.action for e in by_bob] == ["BUDGET_CREATE"]

    pool_rows = funded_ledger.get_audit_trail(entity="FundPool")
    assert [e.action for e in pool_rows] == ["FUND_POOL_UPDATED", "FUND_POOL_DEDUCT"]

    assert len(funded_ledger.get_audit_trail(limit=1)) == 1


def test_concurrent_approvals_never_overdraw_pool(ledger: FundLedger, admin: Actor) -> None:
    """Eight approvals of 30,000 race for a 100,000 pool: exactly three land"""
    ledger.adjust_pool(admin, "100000", note="Term 1 grant")
    budget_ids = [
        ledger.create_budget(
            Actor(actor_id=f"owner-{i}"), title=f"Request {i}", requested_amount="30000"
        ).budget_id
        for i in range(8)
    ]

    def approve(budget_id: str) -> str:
        try:
            ledger.approve_budget(admin, budget_id)
        except InsufficientPool:
            return "refused"
        return "approved"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(approve, budget_ids))

    assert outcomes.count("approved") == 3
    assert outcomes.count("refused") == 5
    assert ledger.pool_balance().balance == Decimal("10000.00")
    statuses = [ledger.get_budget(budget_id).status for budget_id in budget_ids]
    assert statuses.count(BudgetStatus.APPROVED) == 3
