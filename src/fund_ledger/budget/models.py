"""
Budget Domain Models - the folded state of a budget stream

A Budget owns its line items, batches, transactions, supplementary
requests, expenditures and revision requests. None of the totals are
stored: allocated, disbursed and spent amounts are computed from the
records every time they are asked for, so they cannot drift from the
ledger rows they summarise.

Key concepts:
- Effective allocation: allocated amount plus every APPROVED supplementary
- Disbursed: COMPLETED disbursements minus COMPLETED reversals
- Headroom: effective allocation minus disbursed minus in-flight PENDING
- Spent: sum of non-void expenditures
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field

from fund_ledger.kernel.money import ZERO


class BudgetStatus(str, Enum):
    """
    Budget lifecycle states

    DRAFT → PENDING → {APPROVED | REJECTED}
    APPROVED → {PARTIALLY_DISBURSED | DISBURSED | REVOKED}

    Once approved, APPROVED/PARTIALLY_DISBURSED/DISBURSED are derived from
    the transaction ledger after every event, not set by hand.
    """

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    PARTIALLY_DISBURSED = "PARTIALLY_DISBURSED"
    DISBURSED = "DISBURSED"
    REVOKED = "REVOKED"


# Approved budgets whose money is still live
FUNDED_STATUSES = frozenset(
    {BudgetStatus.APPROVED, BudgetStatus.PARTIALLY_DISBURSED, BudgetStatus.DISBURSED}
)


class Priority(str, Enum):
    """Informational urgency; orders the admin approval queue"""

    EMERGENCY = "EMERGENCY"
    URGENT = "URGENT"
    NORMAL = "NORMAL"
    LONG_TERM = "LONG_TERM"

    def rank(self) -> int:
        """Queue position - lower ranks are reviewed first"""
        return {
            Priority.EMERGENCY: 0,
            Priority.URGENT: 1,
            Priority.NORMAL: 2,
            Priority.LONG_TERM: 3,
        }[self]


class DisbursementType(str, Enum):
    """FULL pays any amount up to headroom; BATCHES pays fixed slices in order"""

    FULL = "FULL"
    BATCHES = "BATCHES"


class BatchStatus(str, Enum):
    PENDING = "PENDING"
    DISBURSED = "DISBURSED"


class TransactionType(str, Enum):
    DISBURSEMENT = "DISBURSEMENT"
    REVERSAL = "REVERSAL"
    FEE = "FEE"


class TransactionStatus(str, Enum):
    """
    PENDING → {COMPLETED | FAILED | CANCELLED}

    Payment channels report success as "SUCCESS"; it is stored as COMPLETED.
    """

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class DisbursementMethod(str, Enum):
    BANK_TRANSFER = "BANK_TRANSFER"
    CASH = "CASH"
    CHEQUE = "CHEQUE"
    MOBILE_MONEY = "MOBILE_MONEY"
    OTHER = "OTHER"


class SupplementaryStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class SupplementarySource(str, Enum):
    """Whether the owner asked directly or an overspending expenditure raised it"""

    OWNER = "OWNER"
    EXPENDITURE = "EXPENDITURE"


class ExpenditureStatus(str, Enum):
    """Expenditures are view-only once recorded; VOID is the only way out"""

    RECORDED = "RECORDED"
    VOID = "VOID"


class RevisionStatus(str, Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class BudgetItem(BaseModel):
    """
    Single line item in a budget

    Attributes:
        item_id: Unique identifier within budget
        name: Human-readable name
        unit_price: Price per unit
        quantity: Number of units (>= 1)
    """

    item_id: str
    name: str
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)

    @property
    def amount(self) -> Decimal:
        """Planned amount for this line (unit_price × quantity)"""
        return self.unit_price * self.quantity


class Batch(BaseModel):
    """
    A fixed slice of the allocation, disbursed as an indivisible unit

    ``transaction_id`` is set while a disbursement for this batch is in
    flight; the batch flips to DISBURSED when that transaction completes.
    """

    batch_id: str
    sequence: int = Field(ge=1)
    amount: Decimal = Field(gt=0)
    status: BatchStatus = BatchStatus.PENDING
    transaction_id: str | None = None
    disbursed_at: datetime | None = None

    @property
    def is_reserved(self) -> bool:
        return self.status == BatchStatus.PENDING and self.transaction_id is not None


class Transaction(BaseModel):
    """Append-only record of a real money movement against a budget"""

    transaction_id: str
    reference: str
    type: TransactionType
    status: TransactionStatus
    amount: Decimal = Field(gt=0)
    method: DisbursementMethod | None = None
    destination: str | None = None
    channel: str | None = None
    channel_ref: str | None = None
    batch_id: str | None = None
    reverses: str | None = None
    actor_id: str | None = None
    created_at: datetime
    settled_at: datetime | None = None
    failure_reason: str | None = None


class SupplementaryBudget(BaseModel):
    """A request to raise the budget's allocation ceiling"""

    supplementary_id: str
    amount: Decimal = Field(gt=0)
    reason: str
    status: SupplementaryStatus = SupplementaryStatus.PENDING
    source: SupplementarySource = SupplementarySource.OWNER
    expenditure_id: str | None = None
    requested_by: str
    requested_at: datetime
    decided_by: str | None = None
    decided_at: datetime | None = None
    decision_note: str | None = None

    @property
    def approved_at(self) -> datetime | None:
        return self.decided_at if self.status == SupplementaryStatus.APPROVED else None


class ExpenditureItem(BaseModel):
    """Spend against one budget item"""

    budget_item_id: str
    spent_amount: Decimal = Field(gt=0)
    planned_amount: Decimal = ZERO
    overage: Decimal = ZERO


class Expenditure(BaseModel):
    """
    A recorded spend against one or more budget items

    ``flagged`` marks an expenditure that pushed an item past its planned
    amount or the budget past its allocation.
    """

    expenditure_id: str
    title: str
    description: str = ""
    priority: Priority = Priority.NORMAL
    status: ExpenditureStatus = ExpenditureStatus.RECORDED
    items: list[ExpenditureItem]
    flagged: bool = False
    supplementary_id: str | None = None
    posted_by: str
    posted_at: datetime
    voided_by: str | None = None
    voided_at: datetime | None = None
    void_reason: str | None = None

    @property
    def amount(self) -> Decimal:
        return sum((item.spent_amount for item in self.items), ZERO)


class Revision(BaseModel):
    """An admin's request for the owner to edit a PENDING budget"""

    revision_id: str
    reason: str
    status: RevisionStatus = RevisionStatus.OPEN
    requested_by: str
    requested_at: datetime
    resolved_at: datetime | None = None


class Budget(BaseModel):
    """
    A budget and everything recorded against it

    Built by replaying the budget's event stream (see aggregate.py). All
    amount properties are computed from the owned records.
    """

    budget_id: str
    owner_id: str
    title: str
    description: str = ""
    requested_amount: Decimal = Field(ge=0)
    allocated_amount: Decimal = ZERO
    status: BudgetStatus = BudgetStatus.DRAFT
    priority: Priority = Priority.NORMAL
    disbursement_type: DisbursementType = DisbursementType.FULL
    batch_count: int | None = None

    items: dict[str, BudgetItem] = Field(default_factory=dict)
    batches: list[Batch] = Field(default_factory=list)
    transactions: list[Transaction] = Field(default_factory=list)
    supplementaries: dict[str, SupplementaryBudget] = Field(default_factory=dict)
    expenditures: dict[str, Expenditure] = Field(default_factory=dict)
    revisions: list[Revision] = Field(default_factory=list)

    created_at: datetime
    submitted_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_by: str | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    revoked_by: str | None = None
    revoked_at: datetime | None = None
    revocation_reason: str | None = None
    deleted: bool = False
    version: int = 0

    # ========== Supplementary ==========

    def approved_supplementary_total(self) -> Decimal:
        return sum(
            (
                s.amount
                for s in self.supplementaries.values()
                if s.status == SupplementaryStatus.APPROVED
            ),
            ZERO,
        )

    def pending_supplementary_total(self) -> Decimal:
        return sum(
            (
                s.amount
                for s in self.supplementaries.values()
                if s.status == SupplementaryStatus.PENDING
            ),
            ZERO,
        )

    def effective_allocation(self) -> Decimal:
        """Allocated amount plus every approved supplementary"""
        return self.allocated_amount + self.approved_supplementary_total()

    def allocation_ceiling(self) -> Decimal:
        """Upper bound for the allocation: requested plus approved supplementaries"""
        return self.requested_amount + self.approved_supplementary_total()

    # ========== Transactions ==========

    def _completed_total(self, tx_type: TransactionType) -> Decimal:
        return sum(
            (
                t.amount
                for t in self.transactions
                if t.type == tx_type and t.status == TransactionStatus.COMPLETED
            ),
            ZERO,
        )

    def disbursed_amount(self) -> Decimal:
        """COMPLETED disbursements minus COMPLETED reversals"""
        return self._completed_total(TransactionType.DISBURSEMENT) - self._completed_total(
            TransactionType.REVERSAL
        )

    def pending_transactions(self) -> list[Transaction]:
        return [
            t
            for t in self.transactions
            if t.type == TransactionType.DISBURSEMENT and t.status == TransactionStatus.PENDING
        ]

    def pending_disbursement_total(self) -> Decimal:
        return sum((t.amount for t in self.pending_transactions()), ZERO)

    def headroom(self) -> Decimal:
        """What can still be disbursed: in-flight payments already hold their share"""
        return self.effective_allocation() - self.disbursed_amount() - self.pending_disbursement_total()

    def undisbursed_amount(self) -> Decimal:
        return self.effective_allocation() - self.disbursed_amount()

    def find_transaction(self, transaction_id: str) -> Transaction | None:
        for transaction in self.transactions:
            if transaction.transaction_id == transaction_id:
                return transaction
        return None

    def find_by_reference(self, reference: str) -> Transaction | None:
        """Look a transaction up by our reference or by the channel's reference"""
        for transaction in self.transactions:
            if reference in (transaction.reference, transaction.channel_ref):
                return transaction
        return None

    # ========== Batches ==========

    def next_pending_batch(self) -> Batch | None:
        """Lowest-sequence batch not yet disbursed (may be reserved)"""
        pending = [b for b in self.batches if b.status == BatchStatus.PENDING]
        return min(pending, key=lambda b: b.sequence) if pending else None

    def find_batch(self, batch_id: str) -> Batch | None:
        for batch in self.batches:
            if batch.batch_id == batch_id:
                return batch
        return None

    # ========== Expenditures ==========

    def recorded_expenditures(self) -> list[Expenditure]:
        return [
            e for e in self.expenditures.values() if e.status == ExpenditureStatus.RECORDED
        ]

    def spent_amount(self) -> Decimal:
        """Sum of every non-void expenditure"""
        return sum((e.amount for e in self.recorded_expenditures()), ZERO)

    def spent_on_item(self, item_id: str) -> Decimal:
        return sum(
            (
                line.spent_amount
                for e in self.recorded_expenditures()
                for line in e.items
                if line.budget_item_id == item_id
            ),
            ZERO,
        )

    def referenced_item_ids(self) -> set[str]:
        """Items any expenditure (even a void one) has spent against"""
        return {
            line.budget_item_id for e in self.expenditures.values() for line in e.items
        }

    # ========== Lifecycle ==========

    def open_revisions(self) -> list[Revision]:
        return [r for r in self.revisions if r.status == RevisionStatus.OPEN]

    def is_funded(self) -> bool:
        """Approved and not revoked"""
        return self.status in FUNDED_STATUSES

    def derive_disbursal_status(self) -> BudgetStatus:
        """Status implied by the ledger for an approved, unrevoked budget"""
        disbursed = self.disbursed_amount()
        effective = self.effective_allocation()
        if disbursed > ZERO and disbursed >= effective:
            return BudgetStatus.DISBURSED
        if disbursed > ZERO:
            return BudgetStatus.PARTIALLY_DISBURSED
        return BudgetStatus.APPROVED

    def dependents(self) -> list[str]:
        """Ledger records that block hard deletion"""
        found = []
        if self.transactions:
            found.append(f"{len(self.transactions)} transaction(s)")
        if self.batches:
            found.append(f"{len(self.batches)} batch(es)")
        if self.expenditures:
            found.append(f"{len(self.expenditures)} expenditure(s)")
        if self.supplementaries:
            found.append(f"{len(self.supplementaries)} supplementary budget(s)")
        return found

    def summary(self) -> dict:
        """Flat JSON-friendly view for listings and the CLI"""
        return {
            "budget_id": self.budget_id,
            "owner_id": self.owner_id,
            "title": self.title,
            "status": self.status.value,
            "priority": self.priority.value,
            "disbursement_type": self.disbursement_type.value,
            "requested_amount": str(self.requested_amount),
            "allocated_amount": str(self.allocated_amount),
            "effective_allocation": str(self.effective_allocation()),
            "disbursed_amount": str(self.disbursed_amount()),
            "pending_disbursements": str(self.pending_disbursement_total()),
            "spent_amount": str(self.spent_amount()),
            "created_at": self.created_at.isoformat(),
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "version": self.version,
        }
