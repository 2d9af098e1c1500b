"""
Tests for supplementary budgets and expenditure posting

Supplementary approval raises a budget's effective allocation; spend
past the allocation is only accepted together with a supplementary
request that covers it.
"""

from decimal import Decimal

import pytest

from fund_ledger.budget.models import (
    Budget,
    BudgetStatus,
    ExpenditureStatus,
    SupplementarySource,
    SupplementaryStatus,
)
from fund_ledger.kernel.authz import Actor
from fund_ledger.kernel.errors import (
    BudgetItemNotFound,
    ExpenditureNotFound,
    InsufficientAllocation,
    InvalidTransition,
    NotAuthorized,
    NotOwner,
    SupplementaryNotFound,
)
from fund_ledger.ledger import FundLedger


def first_item(budget: Budget) -> str:
    return next(iter(budget.items))


# Supplementary budgets


def test_supplementary_reopens_disbursed_budget(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, owner: Actor
) -> None:
    """80,000 paid out, 10,000 more approved: disbursement can resume"""
    funded_ledger.disburse(admin, approved_budget.budget_id, "80000")
    assert funded_ledger.get_budget(approved_budget.budget_id).status == BudgetStatus.DISBURSED

    request = funded_ledger.request_supplementary(
        owner, approved_budget.budget_id, "10000", reason="Prices went up"
    )
    assert request.status == SupplementaryStatus.PENDING
    assert request.source == SupplementarySource.OWNER

    decided = funded_ledger.decide_supplementary(admin, request.supplementary_id, "APPROVED")
    assert decided.status == SupplementaryStatus.APPROVED
    assert decided.decided_by == "alice"

    budget = funded_ledger.get_budget(approved_budget.budget_id)
    assert budget.effective_allocation() == Decimal("90000.00")
    assert budget.status == BudgetStatus.PARTIALLY_DISBURSED
    assert funded_ledger.pool_balance().balance == Decimal("910000.00")

    funded_ledger.disburse(admin, approved_budget.budget_id, "10000")
    assert funded_ledger.get_budget(approved_budget.budget_id).status == BudgetStatus.DISBURSED


def test_rejected_supplementary_changes_nothing(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, owner: Actor
) -> None:
    request = funded_ledger.request_supplementary(
        owner, approved_budget.budget_id, "10000", reason="Prices went up"
    )

    decided = funded_ledger.decide_supplementary(
        admin, request.supplementary_id, SupplementaryStatus.REJECTED, note="Use the reserve"
    )

    assert decided.status == SupplementaryStatus.REJECTED
    assert decided.decision_note == "Use the reserve"
    budget = funded_ledger.get_budget(approved_budget.budget_id)
    assert budget.effective_allocation() == Decimal("80000.00")
    assert funded_ledger.pool_balance().balance == Decimal("920000.00")


def test_supplementary_decided_once(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, owner: Actor
) -> None:
    request = funded_ledger.request_supplementary(
        owner, approved_budget.budget_id, "10000", reason="Prices went up"
    )
    funded_ledger.decide_supplementary(admin, request.supplementary_id, "APPROVED")

    with pytest.raises(InvalidTransition):
        funded_ledger.decide_supplementary(admin, request.supplementary_id, "REJECTED")


def test_supplementary_needs_funded_budget(funded_ledger: FundLedger, owner: Actor) -> None:
    budget = funded_ledger.create_budget(owner, title="Library books", requested_amount="100")
    with pytest.raises(InvalidTransition):
        funded_ledger.request_supplementary(owner, budget.budget_id, "10", reason="More please")


def test_only_owner_requests_supplementary(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    with pytest.raises(NotOwner):
        funded_ledger.request_supplementary(admin, approved_budget.budget_id, "10", reason="More")


def test_only_admin_decides_supplementary(
    funded_ledger: FundLedger, approved_budget: Budget, owner: Actor
) -> None:
    request = funded_ledger.request_supplementary(
        owner, approved_budget.budget_id, "10000", reason="Prices went up"
    )
    with pytest.raises(NotAuthorized):
        funded_ledger.decide_supplementary(owner, request.supplementary_id, "APPROVED")


def test_unknown_supplementary(funded_ledger: FundLedger, admin: Actor) -> None:
    with pytest.raises(SupplementaryNotFound):
        funded_ledger.decide_supplementary(admin, "nope", "APPROVED")


def test_pending_supplementaries_listed(
    funded_ledger: FundLedger, approved_budget: Budget, owner: Actor
) -> None:
    request = funded_ledger.request_supplementary(
        owner, approved_budget.budget_id, "10000", reason="Prices went up"
    )

    pending = funded_ledger.list_pending_supplementaries()

    assert [(b, s.supplementary_id) for b, s in pending] == [
        (approved_budget.budget_id, request.supplementary_id)
    ]


# Expenditures


def test_expenditure_within_allocation(
    funded_ledger: FundLedger, approved_budget: Budget, owner: Actor
) -> None:
    expenditure = funded_ledger.post_expenditure(
        owner,
        approved_budget.budget_id,
        title="First textbook order",
        items=[{"budget_item_id": first_item(approved_budget), "spent_amount": "45000"}],
    )

    assert expenditure.amount == Decimal("45000.00")
    assert expenditure.flagged is False
    assert expenditure.supplementary_id is None
    assert funded_ledger.get_budget(approved_budget.budget_id).spent_amount() == Decimal("45000.00")


def test_overspend_with_supplementary_request(
    funded_ledger: FundLedger, approved_budget: Budget, owner: Actor
) -> None:
    """90,000 spent against 80,000: a 10,000 supplementary is requested in the same commit"""
    expenditure = funded_ledger.post_expenditure(
        owner,
        approved_budget.budget_id,
        title="Full textbook order",
        items=[{"budget_item_id": first_item(approved_budget), "spent_amount": "90000"}],
        request_supplementary=True,
    )

    assert expenditure.flagged is True
    budget = funded_ledger.get_budget(approved_budget.budget_id)
    supplementary = budget.supplementaries[expenditure.supplementary_id]
    assert supplementary.amount == Decimal("10000.00")
    assert supplementary.status == SupplementaryStatus.PENDING
    assert supplementary.source == SupplementarySource.EXPENDITURE
    assert supplementary.expenditure_id == expenditure.expenditure_id


def test_overspend_without_request_is_refused(
    funded_ledger: FundLedger, approved_budget: Budget, owner: Actor
) -> None:
    with pytest.raises(InsufficientAllocation):
        funded_ledger.post_expenditure(
            owner,
            approved_budget.budget_id,
            title="Full textbook order",
            items=[{"budget_item_id": first_item(approved_budget), "spent_amount": "90000"}],
        )

    assert funded_ledger.list_expenditures(approved_budget.budget_id) == []


def test_item_overage_is_flagged(
    funded_ledger: FundLedger, admin: Actor, owner: Actor
) -> None:
    """Spending past a line item's plan is allowed but flagged"""
    budget = funded_ledger.create_budget(
        owner,
        title="Sports day",
        requested_amount="10000",
        items=[
            {"name": "Medals", "unit_price": "100", "quantity": 20},
            {"name": "Catering", "unit_price": "8000", "quantity": 1},
        ],
    )
    funded_ledger.approve_budget(admin, budget.budget_id)
    medals = next(i for i in budget.items.values() if i.name == "Medals")

    expenditure = funded_ledger.post_expenditure(
        owner,
        budget.budget_id,
        title="Medals",
        items=[{"budget_item_id": medals.item_id, "spent_amount": "2500"}],
    )

    assert expenditure.flagged is True
    assert expenditure.items[0].overage == Decimal("500.00")
    assert expenditure.supplementary_id is None


def test_expenditure_needs_own_item(
    funded_ledger: FundLedger, approved_budget: Budget, owner: Actor
) -> None:
    with pytest.raises(BudgetItemNotFound):
        funded_ledger.post_expenditure(
            owner,
            approved_budget.budget_id,
            title="Mystery spend",
            items=[{"budget_item_id": "not-an-item", "spent_amount": "10"}],
        )


def test_only_owner_posts_expenditure(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    with pytest.raises(NotOwner):
        funded_ledger.post_expenditure(
            admin,
            approved_budget.budget_id,
            title="Admin spend",
            items=[{"budget_item_id": first_item(approved_budget), "spent_amount": "10"}],
        )


def test_void_expenditure(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, owner: Actor
) -> None:
    expenditure = funded_ledger.post_expenditure(
        owner,
        approved_budget.budget_id,
        title="Duplicate invoice",
        items=[{"budget_item_id": first_item(approved_budget), "spent_amount": "5000"}],
    )

    voided = funded_ledger.void_expenditure(admin, expenditure.expenditure_id, reason="Posted twice")

    assert voided.status == ExpenditureStatus.VOID
    assert voided.void_reason == "Posted twice"
    assert funded_ledger.get_budget(approved_budget.budget_id).spent_amount() == Decimal("0.00")

    with pytest.raises(InvalidTransition):
        funded_ledger.void_expenditure(admin, expenditure.expenditure_id, reason="Again")


def test_void_unknown_expenditure(funded_ledger: FundLedger, admin: Actor) -> None:
    with pytest.raises(ExpenditureNotFound):
        funded_ledger.void_expenditure(admin, "nope", reason="Typo")


def test_owner_cannot_correct_funded_items(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, owner: Actor
) -> None:
    """After approval only an admin may correct a line item"""
    item_id = first_item(approved_budget)
    funded_ledger.post_expenditure(
        owner,
        approved_budget.budget_id,
        title="Textbooks",
        items=[{"budget_item_id": item_id, "spent_amount": "1000"}],
    )

    with pytest.raises(InvalidTransition):
        funded_ledger.correct_budget_item(
            owner, approved_budget.budget_id, item_id, reason="Cheaper supplier", unit_price="900"
        )

    corrected = funded_ledger.correct_budget_item(
        admin, approved_budget.budget_id, item_id, reason="Cheaper supplier", unit_price="900"
    )
    assert corrected.items[item_id].unit_price == Decimal("900.00")
