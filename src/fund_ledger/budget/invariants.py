"""
Budget Module Invariants - rules for requesting and approving money

These pure functions enforce the approval workflow's constraints. They
take folded state and raise a specific error naming what failed; they
never touch storage.
"""

from decimal import Decimal
from typing import Callable, Iterable

from fund_ledger.budget.events import BatchSpec
from fund_ledger.budget.models import Budget, BudgetItem, BudgetStatus, DisbursementType
from fund_ledger.kernel.errors import (
    BudgetHasDependents,
    BudgetItemLocked,
    BudgetItemNotFound,
    InsufficientPool,
    InvalidAmount,
    InvalidInput,
    InvalidTransition,
    PendingBudgetLimitReached,
)
from fund_ledger.kernel.money import ZERO, split_evenly
from fund_ledger.kernel.policy import LedgerPolicy


def validate_status(
    budget: Budget, allowed: Iterable[BudgetStatus], action: str
) -> None:
    """
    Ensure the budget's status permits the action

    Raises:
        InvalidTransition: If budget.status is not in allowed
    """
    allowed = list(allowed)
    if budget.status not in allowed:
        raise InvalidTransition(
            entity="budget",
            entity_id=budget.budget_id,
            current_status=budget.status.value,
            action=action,
            allowed=[s.value for s in allowed],
        )


def validate_positive_amount(amount: Decimal, what: str) -> None:
    """
    Raises:
        InvalidAmount: If amount <= 0
    """
    if amount <= ZERO:
        raise InvalidAmount(amount, f"{what} must be greater than zero")


def validate_title(title: str, policy: LedgerPolicy) -> None:
    """
    Raises:
        InvalidInput: If the stripped title is shorter than min_budget_title_length
    """
    if len(title.strip()) < policy.min_budget_title_length:
        raise InvalidInput(
            "title", f"must be at least {policy.min_budget_title_length} characters"
        )


def validate_pending_limit(owner_id: str, pending_count: int, policy: LedgerPolicy) -> None:
    """
    An owner may hold at most max_pending_budgets_per_owner PENDING budgets

    Raises:
        PendingBudgetLimitReached: If submitting one more would exceed the limit
    """
    if pending_count >= policy.max_pending_budgets_per_owner:
        raise PendingBudgetLimitReached(owner_id, policy.max_pending_budgets_per_owner)


def validate_revision_reason(reason: str, policy: LedgerPolicy) -> None:
    """
    Raises:
        InvalidInput: If the reason is shorter than min_revision_reason_length
    """
    if len(reason.strip()) < policy.min_revision_reason_length:
        raise InvalidInput(
            "reason", f"must be at least {policy.min_revision_reason_length} characters"
        )


def validate_allocation(budget: Budget, allocated_amount: Decimal) -> None:
    """
    Allocation must be positive and no larger than what was requested

    Raises:
        InvalidAmount: If allocation <= 0 or exceeds the requested amount
    """
    validate_positive_amount(allocated_amount, "allocated amount")
    if allocated_amount > budget.allocation_ceiling():
        raise InvalidAmount(
            allocated_amount,
            f"allocation exceeds requested amount {budget.requested_amount}; "
            "use a supplementary budget to go higher",
        )


def validate_pool_covers(pool_balance: Decimal, amount: Decimal) -> None:
    """
    The fund pool must never go negative

    Raises:
        InsufficientPool: If balance < amount
    """
    if pool_balance < amount:
        raise InsufficientPool(requested=amount, balance=pool_balance)


def validate_item_belongs(budget: Budget, item_id: str) -> BudgetItem:
    """
    Raises:
        BudgetItemNotFound: If the item isn't part of this budget
    """
    item = budget.items.get(item_id)
    if item is None:
        raise BudgetItemNotFound(budget.budget_id, item_id)
    return item


def validate_item_editable(budget: Budget, item_id: str, by_admin: bool) -> None:
    """
    Items referenced by an expenditure are frozen for owners

    Raises:
        BudgetItemLocked: If a non-admin edits an item spend already points at
    """
    if not by_admin and item_id in budget.referenced_item_ids():
        raise BudgetItemLocked(budget.budget_id, item_id)


def validate_deletable(budget: Budget) -> None:
    """
    Only a DRAFT with no ledger records may be deleted

    Raises:
        InvalidTransition: If the budget is not DRAFT
        BudgetHasDependents: If transactions, batches, expenditures or
            supplementary budgets are attached
    """
    validate_status(budget, [BudgetStatus.DRAFT], "delete")
    dependents = budget.dependents()
    if dependents:
        raise BudgetHasDependents(budget.budget_id, dependents)


def build_batches(
    total: Decimal,
    *,
    batch_count: int | None,
    batch_amounts: list[Decimal] | None,
    policy: LedgerPolicy,
    id_factory: Callable[[], str],
    start_sequence: int = 1,
) -> list[BatchSpec]:
    """
    Split an amount into disbursement batches

    Explicit amounts must sum to the total exactly. A count splits the
    total into equal minor-unit slices, with the last batch absorbing the
    remainder (100.00 / 3 → 33.33, 33.33, 33.34).

    Args:
        total: Amount the batches must add up to
        batch_count: Number of equal batches (used when batch_amounts is None)
        batch_amounts: Explicit batch amounts
        policy: Supplies max_batch_count
        id_factory: Generates batch ids
        start_sequence: Sequence number of the first batch

    Raises:
        InvalidAmount: If amounts are non-positive, don't sum to total, or
            there are more batches than policy allows
    """
    if batch_amounts:
        amounts = list(batch_amounts)
    else:
        count = batch_count or 1
        if count < 1:
            raise InvalidAmount(total, "batch count must be at least 1")
        if total / count < Decimal("0.01"):
            raise InvalidAmount(total, f"cannot split into {count} batches of at least 0.01")
        amounts = split_evenly(total, count)

    if len(amounts) > policy.max_batch_count:
        raise InvalidAmount(
            total, f"{len(amounts)} batches exceeds the maximum of {policy.max_batch_count}"
        )
    for amount in amounts:
        validate_positive_amount(amount, "batch amount")
    if sum(amounts, ZERO) != total:
        raise InvalidAmount(
            sum(amounts, ZERO), f"batch amounts must sum to {total}"
        )

    return [
        BatchSpec(batch_id=id_factory(), sequence=start_sequence + index, amount=amount)
        for index, amount in enumerate(amounts)
    ]


def resolve_disbursement_type(
    budget: Budget, requested: DisbursementType | None
) -> DisbursementType:
    """Approval may override the type the owner asked for"""
    return requested or budget.disbursement_type
