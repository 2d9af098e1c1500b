"""
Supplementary Module Commands - asking for more than was allocated
"""

from pydantic import BaseModel, Field, field_validator

from fund_ledger.budget.models import SupplementaryStatus
from fund_ledger.kernel.money import Amount


class RequestSupplementary(BaseModel):
    """The owner asks for the budget's allocation ceiling to be raised"""

    budget_id: str
    amount: Amount
    reason: str = Field(..., min_length=1, max_length=2000)


class DecideSupplementary(BaseModel):
    """An admin approves or rejects a PENDING supplementary request"""

    supplementary_id: str
    decision: SupplementaryStatus
    note: str = Field(default="", max_length=2000)

    @field_validator("decision")
    @classmethod
    def final_decision(cls, value: SupplementaryStatus) -> SupplementaryStatus:
        if value == SupplementaryStatus.PENDING:
            raise ValueError("decision must be APPROVED or REJECTED")
        return value
