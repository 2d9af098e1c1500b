"""
Notification models - what the ledger tells people
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    BUDGET_SUBMITTED = "budget_submitted"
    BUDGET_APPROVED = "budget_approved"
    BUDGET_REJECTED = "budget_rejected"
    BUDGET_REVISION_REQUESTED = "budget_revision_requested"
    BUDGET_DISBURSED = "budget_disbursed"
    BUDGET_REVOKED = "budget_revoked"
    DISBURSEMENT_FAILED = "disbursement_failed"
    EXPENDITURE_SUBMITTED = "expenditure_submitted"
    SUPPLEMENTARY_REQUESTED = "supplementary_requested"
    SUPPLEMENTARY_APPROVED = "supplementary_approved"
    SUPPLEMENTARY_REJECTED = "supplementary_rejected"
    REMITTANCE_SUBMITTED = "remittance_submitted"
    REMITTANCE_VERIFIED = "remittance_verified"
    REMITTANCE_REJECTED = "remittance_rejected"
    LEDGER_WARNING = "ledger_warning"


class Notification(BaseModel):
    """
    One message for one or more users

    ``data`` carries the ids a client needs to link back to the record
    (budget_id, transaction_id, ...), taken from the triggering event.
    """

    title: str
    message: str
    type: NotificationType
    data: dict = Field(default_factory=dict)
    event_id: str | None = None
    created_at: datetime

    model_config = {"frozen": True}
