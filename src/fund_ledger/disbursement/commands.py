"""
Disbursement Module Commands - moving allocated money out
"""

from pydantic import BaseModel, Field, field_validator

from fund_ledger.budget.models import DisbursementMethod, TransactionStatus
from fund_ledger.kernel.money import Amount


class Disburse(BaseModel):
    """
    Pay out part (or all) of a budget's allocation

    For a BATCHES budget the amount must equal the next pending batch.
    """

    budget_id: str
    amount: Amount
    method: DisbursementMethod = DisbursementMethod.BANK_TRANSFER
    destination: str | None = Field(default=None, max_length=200)


class SettleDisbursement(BaseModel):
    """
    Payment channel callback for a PENDING disbursement

    The channel reports SUCCESS or FAILED; SUCCESS is stored as COMPLETED.
    """

    channel_ref: str = Field(..., min_length=1)
    outcome: TransactionStatus
    reason: str | None = None

    @field_validator("outcome", mode="before")
    @classmethod
    def normalise_outcome(cls, value: object) -> object:
        if isinstance(value, str) and value.upper() == "SUCCESS":
            return TransactionStatus.COMPLETED
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("outcome")
    @classmethod
    def final_outcome(cls, value: TransactionStatus) -> TransactionStatus:
        if value not in (TransactionStatus.COMPLETED, TransactionStatus.FAILED):
            raise ValueError("settlement outcome must be COMPLETED (SUCCESS) or FAILED")
        return value


class RevokeBudget(BaseModel):
    """Withdraw an APPROVED or PARTIALLY_DISBURSED budget (terminal)"""

    budget_id: str
    reason: str = Field(default="", max_length=2000)


class Rebatch(BaseModel):
    """
    Replace the remaining PENDING batches

    The new amounts must sum to the budget's undisbursed effective
    allocation; the reason is recorded on the event.
    """

    budget_id: str
    amounts: list[Amount] = Field(..., min_length=1)
    reason: str = Field(..., min_length=1, max_length=2000)
