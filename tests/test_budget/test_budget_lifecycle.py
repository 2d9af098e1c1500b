"""
Tests for the budget lifecycle - request, review, approval and rejection

These run through the FundLedger façade so every command is validated,
appended with its audit rows and folded back from the event stream.
"""

from decimal import Decimal

import pytest

from fund_ledger.budget.models import (
    BatchStatus,
    Budget,
    BudgetStatus,
    DisbursementType,
    Priority,
    RevisionStatus,
)
from fund_ledger.kernel.authz import Actor
from fund_ledger.kernel.errors import (
    BatchAmountMismatch,
    BudgetNotFound,
    InsufficientPool,
    InvalidAmount,
    InvalidInput,
    InvalidTransition,
    NotAuthorized,
    NotOwner,
    PendingBudgetLimitReached,
)
from fund_ledger.ledger import FundLedger


def test_create_budget_defaults_amount_to_item_total(ledger: FundLedger, owner: Actor) -> None:
    """Requested amount is the sum of unit_price x quantity when omitted"""
    budget = ledger.create_budget(
        owner,
        title="Lab equipment",
        items=[
            {"name": "Microscope", "unit_price": "25000", "quantity": 2},
            {"name": "Slides", "unit_price": "150.50", "quantity": 10},
        ],
    )

    assert budget.status == BudgetStatus.PENDING
    assert budget.requested_amount == Decimal("51505.00")
    assert budget.owner_id == "bob"
    assert len(budget.items) == 2


def test_create_budget_as_draft(ledger: FundLedger, owner: Actor) -> None:
    budget = ledger.create_budget(owner, title="Sports kit", requested_amount="5000", submit=False)
    assert budget.status == BudgetStatus.DRAFT
    assert budget.submitted_at is None

    submitted = ledger.submit_budget(owner, budget.budget_id)
    assert submitted.status == BudgetStatus.PENDING


def test_create_budget_rejects_short_title(ledger: FundLedger, owner: Actor) -> None:
    with pytest.raises(InvalidInput):
        ledger.create_budget(owner, title="ab", requested_amount="100")


def test_create_budget_needs_an_amount(ledger: FundLedger, owner: Actor) -> None:
    """No amount and no items leaves nothing to ask for"""
    with pytest.raises(InvalidAmount):
        ledger.create_budget(owner, title="Empty request")


def test_pending_budget_limit(ledger: FundLedger, owner: Actor) -> None:
    """The sixth PENDING budget is refused; drafts don't count"""
    for n in range(5):
        ledger.create_budget(owner, title=f"Request {n}", requested_amount="100")

    with pytest.raises(PendingBudgetLimitReached):
        ledger.create_budget(owner, title="One too many", requested_amount="100")

    draft = ledger.create_budget(owner, title="Saved for later", requested_amount="100", submit=False)
    assert draft.status == BudgetStatus.DRAFT


def test_approve_debits_pool(funded_ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    """Approval reserves the allocation in the pool in the same commit"""
    budget = funded_ledger.create_budget(owner, title="Library books", requested_amount="100000")

    approved = funded_ledger.approve_budget(admin, budget.budget_id, allocated_amount="80000")

    assert approved.status == BudgetStatus.APPROVED
    assert approved.allocated_amount == Decimal("80000.00")
    assert approved.approved_by == "alice"
    assert funded_ledger.pool_balance().balance == Decimal("920000.00")

    actions = [e.action for e in funded_ledger.get_audit_trail(action="FUND_POOL_DEDUCT")]
    assert actions == ["FUND_POOL_DEDUCT"]


def test_approve_defaults_to_requested_amount(
    funded_ledger: FundLedger, admin: Actor, owner: Actor
) -> None:
    budget = funded_ledger.create_budget(owner, title="Library books", requested_amount="100000")
    approved = funded_ledger.approve_budget(admin, budget.budget_id)
    assert approved.allocated_amount == Decimal("100000.00")


def test_approve_above_requested_is_refused(
    funded_ledger: FundLedger, admin: Actor, owner: Actor
) -> None:
    """More money than asked for must come through a supplementary budget"""
    budget = funded_ledger.create_budget(owner, title="Library books", requested_amount="100000")

    with pytest.raises(InvalidAmount):
        funded_ledger.approve_budget(admin, budget.budget_id, allocated_amount="100000.01")


def test_approve_needs_pool_cover(ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    ledger.adjust_pool(admin, "50000", note="Small float")
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100000")

    with pytest.raises(InsufficientPool):
        ledger.approve_budget(admin, budget.budget_id)

    assert ledger.get_budget(budget.budget_id).status == BudgetStatus.PENDING
    assert ledger.pool_balance().balance == Decimal("50000.00")


def test_owner_cannot_approve(funded_ledger: FundLedger, owner: Actor) -> None:
    budget = funded_ledger.create_budget(owner, title="Library books", requested_amount="100")
    with pytest.raises(NotAuthorized):
        funded_ledger.approve_budget(owner, budget.budget_id)


def test_approve_twice_is_invalid(approved_budget: Budget, funded_ledger: FundLedger, admin: Actor) -> None:
    with pytest.raises(InvalidTransition):
        funded_ledger.approve_budget(admin, approved_budget.budget_id)


def test_approve_replay_is_idempotent(
    funded_ledger: FundLedger, admin: Actor, owner: Actor
) -> None:
    """Re-sending the same command id changes nothing and raises nothing"""
    budget = funded_ledger.create_budget(owner, title="Library books", requested_amount="100000")

    first = funded_ledger.approve_budget(admin, budget.budget_id, command_id="approve-1")
    second = funded_ledger.approve_budget(admin, budget.budget_id, command_id="approve-1")

    assert first.version == second.version
    assert funded_ledger.pool_balance().balance == Decimal("900000.00")


def test_approve_into_batches(funded_ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    budget = funded_ledger.create_budget(
        owner,
        title="Classroom build",
        requested_amount="100",
        disbursement_type=DisbursementType.BATCHES,
        batch_count=3,
    )

    approved = funded_ledger.approve_budget(admin, budget.budget_id)

    assert [b.amount for b in approved.batches] == [
        Decimal("33.33"),
        Decimal("33.33"),
        Decimal("33.34"),
    ]
    assert [b.sequence for b in approved.batches] == [1, 2, 3]
    assert all(b.status == BatchStatus.PENDING for b in approved.batches)


def test_approve_batches_must_sum_to_allocation(
    funded_ledger: FundLedger, admin: Actor, owner: Actor
) -> None:
    budget = funded_ledger.create_budget(owner, title="Classroom build", requested_amount="80000")

    with pytest.raises(InvalidAmount):
        funded_ledger.approve_budget(
            admin,
            budget.budget_id,
            disbursement_type=DisbursementType.BATCHES,
            batch_amounts=["20000", "20000"],
        )


def test_reject_is_terminal(funded_ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    budget = funded_ledger.create_budget(owner, title="Library books", requested_amount="100")

    rejected = funded_ledger.reject_budget(admin, budget.budget_id, reason="Out of scope")
    assert rejected.status == BudgetStatus.REJECTED
    assert rejected.rejection_reason == "Out of scope"

    with pytest.raises(InvalidTransition):
        funded_ledger.approve_budget(admin, budget.budget_id)


def test_revision_round_trip(ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    """A revision request keeps the budget PENDING until the owner answers"""
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100000")

    requested = ledger.request_revision(admin, budget.budget_id, reason="Please itemise the request")
    assert requested.status == BudgetStatus.PENDING
    assert len(requested.open_revisions()) == 1

    revised = ledger.revise_budget(owner, budget.budget_id, requested_amount="90000")
    assert revised.requested_amount == Decimal("90000.00")
    assert revised.open_revisions() == []
    assert revised.revisions[0].status == RevisionStatus.RESOLVED


def test_revision_reason_too_short(ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100")
    with pytest.raises(InvalidInput):
        ledger.request_revision(admin, budget.budget_id, reason="fix")


def test_revise_without_changes(ledger: FundLedger, owner: Actor) -> None:
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100")
    with pytest.raises(InvalidInput):
        ledger.revise_budget(owner, budget.budget_id)


def test_only_owner_can_revise(ledger: FundLedger, owner: Actor) -> None:
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100")
    with pytest.raises(NotOwner):
        ledger.revise_budget(Actor(actor_id="carol"), budget.budget_id, title="Hijacked")


def test_add_and_correct_items(ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    budget = ledger.create_budget(owner, title="Library books", requested_amount="1000")

    with_item = ledger.add_budget_item(owner, budget.budget_id, "Atlas", "250", quantity=2)
    item_id = next(iter(with_item.items))
    assert with_item.items[item_id].amount == Decimal("500.00")

    corrected = ledger.correct_budget_item(
        admin, budget.budget_id, item_id, reason="Supplier quote", unit_price="300"
    )
    assert corrected.items[item_id].unit_price == Decimal("300.00")
    assert corrected.items[item_id].quantity == 2


def test_malformed_amounts_are_invalid_amounts(ledger: FundLedger, owner: Actor) -> None:
    with pytest.raises(InvalidAmount):
        ledger.create_budget(owner, title="Library books", requested_amount="99.999")
    with pytest.raises(InvalidAmount):
        ledger.create_budget(
            owner,
            title="Library books",
            items=[{"name": "Atlas", "unit_price": "-250"}],
        )

    budget = ledger.create_budget(owner, title="Library books", requested_amount="1000")
    item_id = next(
        iter(ledger.add_budget_item(owner, budget.budget_id, "Atlas", "250").items)
    )
    with pytest.raises(InvalidAmount):
        ledger.correct_budget_item(
            owner, budget.budget_id, item_id, reason="Typo", unit_price="-1"
        )


def test_delete_draft(ledger: FundLedger, owner: Actor) -> None:
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100", submit=False)

    ledger.delete_budget(owner, budget.budget_id)

    with pytest.raises(BudgetNotFound):
        ledger.get_budget(budget.budget_id)
    assert ledger.list_budgets(owner_id="bob") == []


def test_delete_pending_is_refused(ledger: FundLedger, owner: Actor) -> None:
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100")
    with pytest.raises(InvalidTransition):
        ledger.delete_budget(owner, budget.budget_id)


def test_admin_queue_orders_by_priority(ledger: FundLedger, owner: Actor, test_time) -> None:
    """EMERGENCY first, then oldest first within a priority"""
    normal = ledger.create_budget(owner, title="Normal one", requested_amount="100")
    test_time.advance_minutes(1)
    emergency = ledger.create_budget(
        owner, title="Burst pipe", requested_amount="100", priority=Priority.EMERGENCY
    )
    test_time.advance_minutes(1)
    later_normal = ledger.create_budget(owner, title="Normal two", requested_amount="100")

    queue = [b.budget_id for b in ledger.admin_queue()]
    assert queue == [emergency.budget_id, normal.budget_id, later_normal.budget_id]


def test_get_budget_checks_viewer(ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100")

    assert ledger.get_budget(budget.budget_id, actor=owner).budget_id == budget.budget_id
    assert ledger.get_budget(budget.budget_id, actor=admin).budget_id == budget.budget_id
    with pytest.raises(NotOwner):
        ledger.get_budget(budget.budget_id, actor=Actor(actor_id="carol"))


def test_batch_mismatch_is_an_invalid_amount() -> None:
    assert issubclass(BatchAmountMismatch, InvalidAmount)
