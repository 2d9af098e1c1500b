"""
Budget Module Events - facts about a budget's request and approval

Events are immutable facts about what happened. They form the
append-only log that is the source of truth for the budget module.
Payload models here are dumped into Event.payload on write and validated
back on replay.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fund_ledger.budget.models import DisbursementType, Priority


class ItemSpec(BaseModel):
    """A budget line item as recorded in event payloads"""

    item_id: str
    name: str
    unit_price: Decimal
    quantity: int


class BatchSpec(BaseModel):
    """A disbursement batch as recorded in event payloads"""

    batch_id: str
    sequence: int
    amount: Decimal


class BudgetCreated(BaseModel):
    """
    A user asked for money

    Budgets created with submit=True go straight to PENDING; otherwise they
    stay DRAFT until BudgetSubmitted.
    """

    budget_id: str
    owner_id: str
    title: str
    description: str = ""
    requested_amount: Decimal
    priority: Priority
    disbursement_type: DisbursementType
    batch_count: int | None = None
    items: list[ItemSpec] = Field(default_factory=list)
    submitted: bool
    created_at: datetime


class BudgetSubmitted(BaseModel):
    """A DRAFT budget moved to PENDING for admin review"""

    budget_id: str
    submitted_at: datetime


class BudgetItemAdded(BaseModel):
    """The owner added a line item while the budget was DRAFT or PENDING"""

    budget_id: str
    item: ItemSpec
    added_at: datetime


class BudgetItemCorrected(BaseModel):
    """A line item was changed (admin correction once spend references it)"""

    budget_id: str
    item_id: str
    name: str
    unit_price: Decimal
    quantity: int
    reason: str
    corrected_by: str
    corrected_at: datetime


class RevisionRequested(BaseModel):
    """An admin sent a PENDING budget back to its owner for edits"""

    budget_id: str
    revision_id: str
    reason: str
    requested_by: str
    requested_at: datetime


class BudgetRevised(BaseModel):
    """The owner edited the budget, resolving any open revision requests"""

    budget_id: str
    title: str | None = None
    description: str | None = None
    requested_amount: Decimal | None = None
    priority: Priority | None = None
    resolved_revision_ids: list[str] = Field(default_factory=list)
    revised_at: datetime


class BudgetApproved(BaseModel):
    """
    An admin approved the budget and committed an allocation

    The matching PoolDebited event on the fund-pool stream commits in the
    same transaction.
    """

    budget_id: str
    allocated_amount: Decimal
    disbursement_type: DisbursementType
    batches: list[BatchSpec] = Field(default_factory=list)
    approved_by: str
    approved_at: datetime


class BudgetRejected(BaseModel):
    """An admin turned the request down (terminal)"""

    budget_id: str
    reason: str = ""
    rejected_by: str
    rejected_at: datetime


class BudgetDeleted(BaseModel):
    """A DRAFT budget with no ledger records was discarded"""

    budget_id: str
    deleted_by: str
    deleted_at: datetime


# Warning events raised by the reconciliation tick (stream "ledger-monitor")


class LedgerDriftDetected(BaseModel):
    """
    A budget's figures broke a ledger invariant

    check names the broken rule, e.g. "disbursed_exceeds_allocation" or
    "projection_mismatch" (the in-memory read model disagrees with a fresh
    replay of the stream).
    """

    budget_id: str
    check: str
    expected: str
    actual: str
    detected_at: datetime


class BudgetOverspendDetected(BaseModel):
    """Spend exceeds the effective allocation and no pending request covers it"""

    budget_id: str
    spent_amount: Decimal
    effective_allocation: Decimal
    pending_supplementary: Decimal
    overspend: Decimal
    detected_at: datetime
