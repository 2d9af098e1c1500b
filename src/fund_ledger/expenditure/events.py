"""
Expenditure Module Events - spend recorded against budget items
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from fund_ledger.budget.models import Priority


class ExpenditureLineSpec(BaseModel):
    """One budget item's share of an expenditure"""

    budget_item_id: str
    spent_amount: Decimal
    planned_amount: Decimal
    overage: Decimal


class ExpenditurePosted(BaseModel):
    """
    The owner recorded spend

    ``flagged`` is set when an item went past its planned amount or the
    budget went past its effective allocation; ``supplementary_id`` names
    the request raised for the overage in the same commit, if any.
    """

    budget_id: str
    expenditure_id: str
    title: str
    description: str = ""
    priority: Priority
    items: list[ExpenditureLineSpec]
    amount: Decimal
    flagged: bool
    supplementary_id: str | None = None
    posted_by: str
    posted_at: datetime


class ExpenditureVoided(BaseModel):
    """An expenditure was voided and left the spent total"""

    budget_id: str
    expenditure_id: str
    reason: str
    voided_by: str
    voided_at: datetime
