"""
Expenditure Module Commands - recording what the money was spent on
"""

from pydantic import BaseModel, Field

from fund_ledger.budget.models import Priority
from fund_ledger.kernel.money import Amount


class ExpenditureLine(BaseModel):
    """Spend against one budget item"""

    budget_item_id: str
    spent_amount: Amount


class PostExpenditure(BaseModel):
    """
    Record spend against a funded budget

    When the spend would take the budget past its effective allocation,
    request_supplementary=True raises a PENDING supplementary for the
    overage in the same commit; without it the posting is refused.
    """

    budget_id: str
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    priority: Priority = Priority.NORMAL
    items: list[ExpenditureLine] = Field(..., min_length=1)
    request_supplementary: bool = False
    supplementary_reason: str | None = Field(default=None, max_length=2000)


class VoidExpenditure(BaseModel):
    """Take a recorded expenditure out of the spent total"""

    expenditure_id: str
    reason: str = Field(..., min_length=1, max_length=2000)
