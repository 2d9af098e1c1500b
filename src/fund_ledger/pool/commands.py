"""
Fund Pool Commands
"""

from pydantic import BaseModel, Field

from fund_ledger.kernel.money import Amount


class AdjustPool(BaseModel):
    """
    Deposit (positive delta) or withdraw (negative delta) funds

    The note is written to the audit trail next to the actor.
    """

    delta: Amount
    note: str = Field(..., min_length=1, max_length=1000)


class SubmitRemittance(BaseModel):
    """
    Report money sent in to the pool

    proof is free text (a receipt number, a transfer code) the verifying
    admin checks against the bank or mobile money statement.
    """

    amount: Amount
    note: str = Field(default="", max_length=1000)
    proof: str = Field(default="", max_length=2000)


class VerifyRemittance(BaseModel):
    """Confirm a PENDING remittance arrived; credits the pool"""

    remittance_id: str
    note: str = Field(default="", max_length=1000)


class RejectRemittance(BaseModel):
    """Turn a PENDING remittance down; the pool is untouched"""

    remittance_id: str
    note: str = Field(default="", max_length=1000)
