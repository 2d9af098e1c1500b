"""
Budget Module Commands - Intentions to change a budget's request or approval

Commands represent what users and admins want to do. Field validation
(amount parsing, lengths, ranges) happens here; rules that depend on
current state live in invariants.py and are checked by handlers.
"""

from pydantic import BaseModel, Field

from fund_ledger.budget.models import DisbursementType, Priority
from fund_ledger.kernel.money import Amount, NonNegativeAmount


class BudgetItemSpec(BaseModel):
    """A line item as supplied by the owner"""

    name: str = Field(..., min_length=1, max_length=200)
    unit_price: NonNegativeAmount
    quantity: int = Field(default=1, ge=1)


class CreateBudget(BaseModel):
    """
    Request money

    requested_amount defaults to the sum of the items when omitted.
    submit=False keeps the budget in DRAFT so items can still be added.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=5000)
    requested_amount: Amount | None = None
    priority: Priority = Priority.NORMAL
    disbursement_type: DisbursementType = DisbursementType.FULL
    batch_count: int | None = Field(default=None, ge=1)
    items: list[BudgetItemSpec] = Field(default_factory=list)
    submit: bool = True


class SubmitBudget(BaseModel):
    """Send a DRAFT budget for review (DRAFT → PENDING)"""

    budget_id: str


class AddBudgetItem(BaseModel):
    """Add a line item while the budget is DRAFT or PENDING"""

    budget_id: str
    item: BudgetItemSpec


class CorrectBudgetItem(BaseModel):
    """
    Change a line item

    Owners may edit unreferenced items while DRAFT/PENDING; once any
    expenditure spends against the item, only an admin may correct it.
    """

    budget_id: str
    item_id: str
    name: str | None = Field(default=None, min_length=1, max_length=200)
    unit_price: NonNegativeAmount | None = None
    quantity: int | None = Field(default=None, ge=1)
    reason: str = Field(..., min_length=1, max_length=1000)


class RequestRevision(BaseModel):
    """Send a PENDING budget back to its owner (status stays PENDING)"""

    budget_id: str
    reason: str = Field(..., min_length=1, max_length=2000)


class ReviseBudget(BaseModel):
    """The owner's answer to a revision request"""

    budget_id: str
    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=5000)
    requested_amount: Amount | None = None
    priority: Priority | None = None


class ApproveBudget(BaseModel):
    """
    Approve a PENDING budget and commit an allocation

    allocated_amount defaults to the requested amount. For BATCHES, give
    either batch_amounts (must sum to the allocation) or batch_count.
    """

    budget_id: str
    allocated_amount: Amount | None = None
    disbursement_type: DisbursementType | None = None
    batch_count: int | None = Field(default=None, ge=1)
    batch_amounts: list[Amount] | None = None


class RejectBudget(BaseModel):
    """Turn a PENDING budget down (terminal)"""

    budget_id: str
    reason: str = Field(default="", max_length=2000)


class DeleteBudget(BaseModel):
    """Discard a DRAFT budget that has no ledger records"""

    budget_id: str
