"""
Supplementary Module Events - raising a budget's allocation ceiling
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from fund_ledger.budget.events import BatchSpec
from fund_ledger.budget.models import SupplementarySource, SupplementaryStatus


class SupplementaryRequested(BaseModel):
    """The owner (or an overspending expenditure) asked for more money"""

    budget_id: str
    supplementary_id: str
    amount: Decimal
    reason: str
    source: SupplementarySource
    expenditure_id: str | None = None
    requested_by: str
    requested_at: datetime


class SupplementaryDecided(BaseModel):
    """
    An admin approved or rejected a supplementary request

    On APPROVED the effective allocation grows by ``amount`` and, for a
    BATCHES budget, ``batch`` is appended so batches keep summing to it.
    """

    budget_id: str
    supplementary_id: str
    decision: SupplementaryStatus
    amount: Decimal
    note: str = ""
    batch: BatchSpec | None = None
    requested_by: str
    decided_by: str
    decided_at: datetime
