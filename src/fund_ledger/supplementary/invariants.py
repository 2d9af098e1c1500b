"""
Supplementary Module Invariants

A supplementary only makes sense on a live allocation: it can't be asked
for before approval, nor after rejection or revocation.
"""

from decimal import Decimal

from fund_ledger.budget.invariants import validate_status
from fund_ledger.budget.models import (
    FUNDED_STATUSES,
    Budget,
    SupplementaryBudget,
    SupplementaryStatus,
)
from fund_ledger.kernel.errors import InvalidAmount, InvalidTransition, SupplementaryNotFound
from fund_ledger.kernel.money import ZERO


def validate_budget_accepts_supplementary(budget: Budget) -> None:
    """
    Raises:
        InvalidTransition: If the budget is DRAFT, PENDING, REJECTED or REVOKED
    """
    validate_status(budget, sorted(FUNDED_STATUSES), "raise the allocation of")


def validate_supplementary_amount(amount: Decimal) -> None:
    """
    Raises:
        InvalidAmount: If amount <= 0
    """
    if amount <= ZERO:
        raise InvalidAmount(amount, "supplementary amount must be greater than zero")


def validate_pending_supplementary(budget: Budget, supplementary_id: str) -> SupplementaryBudget:
    """
    Returns:
        The PENDING supplementary request

    Raises:
        SupplementaryNotFound: If the budget has no such request
        InvalidTransition: If the request was already decided
    """
    supplementary = budget.supplementaries.get(supplementary_id)
    if supplementary is None:
        raise SupplementaryNotFound(supplementary_id)
    if supplementary.status != SupplementaryStatus.PENDING:
        raise InvalidTransition(
            entity="supplementary",
            entity_id=supplementary_id,
            current_status=supplementary.status.value,
            action="decide",
            allowed=[SupplementaryStatus.PENDING.value],
        )
    return supplementary
