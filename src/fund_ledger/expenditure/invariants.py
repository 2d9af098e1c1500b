"""
Expenditure Module Invariants - spend is checked against the plan

Two different overages are computed:
- item overage: spend on a line item above its unit_price × quantity.
  Always allowed, always flagged.
- budget excess: spend above the effective allocation plus whatever is
  already asked for in PENDING supplementaries. Needs a supplementary.
"""

from decimal import Decimal

from fund_ledger.budget.invariants import validate_item_belongs
from fund_ledger.budget.models import Budget, Expenditure, ExpenditureStatus
from fund_ledger.expenditure.commands import ExpenditureLine
from fund_ledger.expenditure.events import ExpenditureLineSpec
from fund_ledger.kernel.errors import (
    ExpenditureNotFound,
    InvalidAmount,
    InvalidInput,
    InvalidTransition,
)
from fund_ledger.kernel.money import ZERO


def price_lines(budget: Budget, lines: list[ExpenditureLine]) -> list[ExpenditureLineSpec]:
    """
    Check each line and compute its item overage

    Overage is cumulative: only the part of this posting that takes the
    item's total spend past its planned amount counts, so earlier
    postings that already overran are not charged twice.

    Raises:
        BudgetItemNotFound: If a line references an item of another budget
        InvalidAmount: If a spent amount is <= 0
        InvalidInput: If the same item appears twice
    """
    seen: set[str] = set()
    priced = []
    for line in lines:
        if line.budget_item_id in seen:
            raise InvalidInput("items", f"budget item {line.budget_item_id} listed twice")
        seen.add(line.budget_item_id)

        item = validate_item_belongs(budget, line.budget_item_id)
        if line.spent_amount <= ZERO:
            raise InvalidAmount(line.spent_amount, "spent amount must be greater than zero")

        planned = item.amount
        prior = budget.spent_on_item(item.item_id)
        overage = max(ZERO, prior + line.spent_amount - planned) - max(ZERO, prior - planned)
        priced.append(
            ExpenditureLineSpec(
                budget_item_id=item.item_id,
                spent_amount=line.spent_amount,
                planned_amount=planned,
                overage=overage,
            )
        )
    return priced


def budget_excess(budget: Budget, amount: Decimal) -> Decimal:
    """How far spending amount would overrun allocation plus pending requests"""
    covered = budget.effective_allocation() + budget.pending_supplementary_total()
    return max(ZERO, budget.spent_amount() + amount - covered)


def validate_voidable(budget: Budget, expenditure_id: str) -> Expenditure:
    """
    Raises:
        ExpenditureNotFound: If the budget has no such expenditure
        InvalidTransition: If it is already VOID
    """
    expenditure = budget.expenditures.get(expenditure_id)
    if expenditure is None:
        raise ExpenditureNotFound(expenditure_id)
    if expenditure.status != ExpenditureStatus.RECORDED:
        raise InvalidTransition(
            entity="expenditure",
            entity_id=expenditure_id,
            current_status=expenditure.status.value,
            action="void",
            allowed=[ExpenditureStatus.RECORDED.value],
        )
    return expenditure
