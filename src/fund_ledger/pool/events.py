"""
Fund Pool Events - movements of the organisation-wide balance

Every pool event carries the balance after the movement, so the pool
history reads like a bank statement. Remittance events live on each
remittance's own stream; only a verification touches the pool.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class PoolAdjusted(BaseModel):
    """An admin deposited (positive delta) or withdrew (negative delta) funds"""

    delta: Decimal
    note: str
    balance_after: Decimal
    adjusted_by: str
    adjusted_at: datetime


class PoolDebited(BaseModel):
    """Capacity was committed to a budget (approval or supplementary approval)"""

    amount: Decimal
    budget_id: str
    reason: str  # "allocation" or "supplementary"
    reference_id: str
    balance_after: Decimal
    debited_at: datetime


class PoolCredited(BaseModel):
    """Committed capacity came back to the pool (budget revoked)"""

    amount: Decimal
    budget_id: str
    reason: str
    balance_after: Decimal
    credited_at: datetime


class PoolRemittanceReceived(BaseModel):
    """A verified remittance was added to the pool"""

    amount: Decimal
    remittance_id: str
    remitted_by: str
    balance_after: Decimal
    received_at: datetime


class RemittanceSubmitted(BaseModel):
    remittance_id: str
    amount: Decimal
    note: str
    proof: str
    submitted_by: str
    submitted_at: datetime


class RemittanceVerified(BaseModel):
    remittance_id: str
    amount: Decimal
    submitted_by: str
    note: str
    verified_by: str
    verified_at: datetime


class RemittanceRejected(BaseModel):
    remittance_id: str
    amount: Decimal
    submitted_by: str
    note: str
    rejected_by: str
    rejected_at: datetime
