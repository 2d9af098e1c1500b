"""
Tests for money helpers, authorization rules and the ledger policy
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from fund_ledger.budget.models import Budget
from fund_ledger.kernel.authz import Actor, Capability, Role, authorize
from fund_ledger.kernel.errors import InvalidAmount, NotAuthorized, NotOwner
from fund_ledger.kernel.money import split_evenly, to_amount
from fund_ledger.kernel.policy import LedgerPolicy


@pytest.fixture
def budget() -> Budget:
    return Budget(
        budget_id="b-1",
        owner_id="bob",
        title="Library books",
        requested_amount=Decimal("100000.00"),
        created_at=datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc),
    )


# Money


def test_to_amount_pads_to_cents() -> None:
    assert to_amount("10.5") == Decimal("10.50")
    assert to_amount("10.500") == Decimal("10.50")
    assert to_amount(7) == Decimal("7.00")
    assert to_amount(Decimal("0.1")) + to_amount("0.2") == Decimal("0.30")


@pytest.mark.parametrize("value", [0.1, True, "ten", "NaN", "10.005", Decimal("0.001")])
def test_to_amount_rejects_non_decimal_input(value) -> None:
    with pytest.raises(InvalidAmount):
        to_amount(value)


def test_split_evenly_puts_remainder_in_last_slice() -> None:
    slices = split_evenly(Decimal("100.00"), 3)
    assert slices == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]
    assert sum(slices) == Decimal("100.00")


# Authorization


def test_admin_only_capabilities(budget: Budget) -> None:
    admin = Actor(actor_id="alice", role=Role.ADMIN)
    owner = Actor(actor_id="bob")

    authorize(admin, Capability.APPROVE_BUDGET, budget)
    with pytest.raises(NotAuthorized):
        authorize(owner, Capability.APPROVE_BUDGET, budget)
    with pytest.raises(NotAuthorized):
        authorize(owner, Capability.DISBURSE, budget)


def test_owner_only_capabilities(budget: Budget) -> None:
    """Even an admin cannot post spend on someone else's budget"""
    authorize(Actor(actor_id="bob"), Capability.POST_EXPENDITURE, budget)

    with pytest.raises(NotOwner):
        authorize(Actor(actor_id="carol"), Capability.POST_EXPENDITURE, budget)
    with pytest.raises(NotOwner):
        authorize(Actor(actor_id="alice", role=Role.ADMIN), Capability.REQUEST_SUPPLEMENTARY, budget)


def test_owner_or_admin_capabilities(budget: Budget) -> None:
    authorize(Actor(actor_id="bob"), Capability.VIEW_BUDGET, budget)
    authorize(Actor(actor_id="alice", role=Role.ADMIN), Capability.VIEW_BUDGET, budget)

    with pytest.raises(NotOwner):
        authorize(Actor(actor_id="carol"), Capability.VIEW_BUDGET, budget)


def test_settlement_is_for_system_or_admin(budget: Budget) -> None:
    authorize(Actor.system(), Capability.SETTLE_DISBURSEMENT, budget)
    authorize(Actor(actor_id="alice", role=Role.ADMIN), Capability.SETTLE_DISBURSEMENT, budget)

    with pytest.raises(NotAuthorized):
        authorize(Actor(actor_id="bob"), Capability.SETTLE_DISBURSEMENT, budget)


def test_system_actor_cannot_act_as_owner(budget: Budget) -> None:
    with pytest.raises(NotAuthorized):
        authorize(Actor.system(), Capability.POST_EXPENDITURE, budget)


# Policy


def test_policy_defaults() -> None:
    policy = LedgerPolicy()
    assert policy.currency == "KES"
    assert policy.settlement_timeout.total_seconds() == 30 * 60
    assert policy.max_pending_budgets_per_owner == 5


def test_policy_is_frozen() -> None:
    policy = LedgerPolicy()
    with pytest.raises(ValidationError):
        policy.currency = "USD"
