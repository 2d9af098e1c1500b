"""
Disbursement Module Events - money leaving the allocation

A disbursement is recorded as soon as it is initiated. Synchronous
channels (cash, cheque, manual bank transfer) record it COMPLETED in one
event; asynchronous channels record it PENDING, then DisbursementDispatched
once the channel acknowledges, then DisbursementSettled when the callback
arrives.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field

from fund_ledger.budget.events import BatchSpec
from fund_ledger.budget.models import DisbursementMethod, TransactionStatus


class DisbursementInitiated(BaseModel):
    """
    A DISBURSEMENT transaction was written

    status is COMPLETED for synchronous channels and PENDING otherwise.
    A PENDING transaction holds headroom (and its batch) until settled.
    """

    budget_id: str
    transaction_id: str
    reference: str
    amount: Decimal
    method: DisbursementMethod
    destination: str | None = None
    channel: str
    channel_ref: str | None = None
    batch_id: str | None = None
    status: TransactionStatus
    initiated_by: str
    initiated_at: datetime


class DisbursementDispatched(BaseModel):
    """The payment channel acknowledged a PENDING disbursement"""

    budget_id: str
    transaction_id: str
    channel_ref: str
    dispatched_at: datetime


class DisbursementSettled(BaseModel):
    """
    A PENDING disbursement reached a final state

    outcome is COMPLETED or FAILED. FAILED never counts toward the
    disbursed amount and releases the batch it had reserved.
    """

    budget_id: str
    transaction_id: str
    channel_ref: str | None = None
    outcome: TransactionStatus
    reason: str | None = None
    settled_at: datetime


class ReversalSpec(BaseModel):
    """A REVERSAL transaction written when a budget is revoked"""

    transaction_id: str
    reverses: str
    reference: str
    amount: Decimal


class BudgetRevoked(BaseModel):
    """
    An admin withdrew the budget (terminal)

    Every COMPLETED disbursement is reversed, every PENDING one cancelled,
    and the whole reservation returns to the fund pool (PoolCredited, same
    transaction).
    """

    budget_id: str
    reason: str = ""
    reversals: list[ReversalSpec] = Field(default_factory=list)
    cancelled_transaction_ids: list[str] = Field(default_factory=list)
    pool_credit: Decimal
    revoked_by: str
    revoked_at: datetime


class BatchesRestructured(BaseModel):
    """An admin replaced the remaining PENDING batches, with a recorded reason"""

    budget_id: str
    replaced_batch_ids: list[str]
    batches: list[BatchSpec]
    reason: str
    restructured_by: str
    restructured_at: datetime
