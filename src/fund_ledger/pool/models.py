"""
Fund Pool Models - the organisation-wide allocatable balance

The pool tracks committed capacity, not cash on hand: approving a budget
debits it by the allocation (money reserved, not yet paid out), revoking
a budget credits the reservation back.

Remittances are money sent in by users. They sit PENDING on their own
stream until an admin verifies them (crediting the pool) or rejects them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from fund_ledger.kernel.money import ZERO

POOL_STREAM_ID = "fund-pool"
POOL_STREAM_TYPE = "fund_pool"
REMITTANCE_STREAM_TYPE = "remittance"


class MovementKind(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    ALLOCATION = "ALLOCATION"
    RELEASE = "RELEASE"
    REMITTANCE = "REMITTANCE"


class PoolMovement(BaseModel):
    """One line of the pool statement"""

    kind: MovementKind
    delta: Decimal
    balance_after: Decimal
    note: str
    budget_id: str | None = None
    remittance_id: str | None = None
    actor_id: str | None = None
    occurred_at: datetime


class FundPool(BaseModel):
    """Folded state of the fund-pool stream"""

    balance: Decimal = ZERO
    version: int = 0
    movements: list[PoolMovement] = Field(default_factory=list)

    def summary(self) -> dict:
        return {
            "balance": str(self.balance),
            "version": self.version,
            "movements": len(self.movements),
        }


class RemittanceStatus(str, Enum):
    """
    PENDING → VERIFIED (pool credited)
    PENDING → REJECTED
    """

    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"


class Remittance(BaseModel):
    """Folded state of one remittance stream"""

    remittance_id: str
    submitted_by: str
    amount: Decimal
    note: str = ""
    proof: str = ""
    status: RemittanceStatus = RemittanceStatus.PENDING
    submitted_at: datetime
    decided_by: str | None = None
    decided_at: datetime | None = None
    decision_note: str = ""
    version: int = 0
