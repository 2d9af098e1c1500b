"""
Budget Aggregate - folds a budget stream into a Budget

Every handler decides against state rebuilt here from the event store at
call time, never against a cached copy. The same fold keeps the
BudgetRegistry read model current, event by event.
"""

from fund_ledger.budget.events import (
    BudgetApproved,
    BudgetCreated,
    BudgetDeleted,
    BudgetItemAdded,
    BudgetItemCorrected,
    BudgetRejected,
    BudgetRevised,
    BudgetSubmitted,
    RevisionRequested,
)
from fund_ledger.budget.models import (
    Batch,
    BatchStatus,
    Budget,
    BudgetItem,
    BudgetStatus,
    Expenditure,
    ExpenditureItem,
    ExpenditureStatus,
    Revision,
    RevisionStatus,
    SupplementaryBudget,
    SupplementaryStatus,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from fund_ledger.disbursement.events import (
    BatchesRestructured,
    BudgetRevoked,
    DisbursementDispatched,
    DisbursementInitiated,
    DisbursementSettled,
)
from fund_ledger.expenditure.events import ExpenditurePosted, ExpenditureVoided
from fund_ledger.kernel.errors import BudgetNotFound
from fund_ledger.kernel.events import Event
from fund_ledger.supplementary.events import SupplementaryDecided, SupplementaryRequested

# Events that can move money and therefore the derived status
LEDGER_EVENTS = frozenset(
    {
        "DisbursementInitiated",
        "DisbursementSettled",
        "SupplementaryDecided",
        "BudgetRevoked",
    }
)


def replay_budget(events: list[Event]) -> Budget | None:
    """
    Rebuild a budget from its stream

    Args:
        events: Events of one budget stream in version order

    Returns:
        The folded Budget, or None if the stream is empty or was deleted
    """
    budget: Budget | None = None
    for event in events:
        budget = apply_budget_event(budget, event)
    if budget is None or budget.deleted:
        return None
    return budget


def load_budget(events: list[Event], budget_id: str) -> Budget:
    """
    Like replay_budget, but a missing budget is an error

    Raises:
        BudgetNotFound: If the stream is empty or the budget was deleted
    """
    budget = replay_budget(events)
    if budget is None:
        raise BudgetNotFound(budget_id)
    return budget


def apply_budget_event(budget: Budget | None, event: Event) -> Budget | None:
    """
    Apply one event to a budget, returning the updated budget

    Unknown event types are ignored so newer streams still fold.
    """
    if event.event_type == "BudgetCreated":
        budget = _apply_created(event)
    elif budget is None:
        return None
    else:
        handler = _APPLIERS.get(event.event_type)
        if handler is None:
            return budget
        handler(budget, event)

    budget.version = event.version
    if event.event_type in LEDGER_EVENTS and budget.is_funded():
        budget.status = budget.derive_disbursal_status()
    return budget


def _apply_created(event: Event) -> Budget:
    payload = BudgetCreated.model_validate(event.payload)
    return Budget(
        budget_id=payload.budget_id,
        owner_id=payload.owner_id,
        title=payload.title,
        description=payload.description,
        requested_amount=payload.requested_amount,
        status=BudgetStatus.PENDING if payload.submitted else BudgetStatus.DRAFT,
        priority=payload.priority,
        disbursement_type=payload.disbursement_type,
        batch_count=payload.batch_count,
        items={
            spec.item_id: BudgetItem(
                item_id=spec.item_id,
                name=spec.name,
                unit_price=spec.unit_price,
                quantity=spec.quantity,
            )
            for spec in payload.items
        },
        created_at=payload.created_at,
        submitted_at=payload.created_at if payload.submitted else None,
    )


# ========== Approval workflow ==========


def _apply_submitted(budget: Budget, event: Event) -> None:
    payload = BudgetSubmitted.model_validate(event.payload)
    budget.status = BudgetStatus.PENDING
    budget.submitted_at = payload.submitted_at


def _apply_item_added(budget: Budget, event: Event) -> None:
    spec = BudgetItemAdded.model_validate(event.payload).item
    budget.items[spec.item_id] = BudgetItem(
        item_id=spec.item_id, name=spec.name, unit_price=spec.unit_price, quantity=spec.quantity
    )


def _apply_item_corrected(budget: Budget, event: Event) -> None:
    payload = BudgetItemCorrected.model_validate(event.payload)
    budget.items[payload.item_id] = BudgetItem(
        item_id=payload.item_id,
        name=payload.name,
        unit_price=payload.unit_price,
        quantity=payload.quantity,
    )


def _apply_revision_requested(budget: Budget, event: Event) -> None:
    payload = RevisionRequested.model_validate(event.payload)
    budget.revisions.append(
        Revision(
            revision_id=payload.revision_id,
            reason=payload.reason,
            requested_by=payload.requested_by,
            requested_at=payload.requested_at,
        )
    )


def _apply_revised(budget: Budget, event: Event) -> None:
    payload = BudgetRevised.model_validate(event.payload)
    if payload.title is not None:
        budget.title = payload.title
    if payload.description is not None:
        budget.description = payload.description
    if payload.requested_amount is not None:
        budget.requested_amount = payload.requested_amount
    if payload.priority is not None:
        budget.priority = payload.priority
    for revision in budget.revisions:
        if revision.revision_id in payload.resolved_revision_ids:
            revision.status = RevisionStatus.RESOLVED
            revision.resolved_at = payload.revised_at


def _apply_approved(budget: Budget, event: Event) -> None:
    payload = BudgetApproved.model_validate(event.payload)
    budget.status = BudgetStatus.APPROVED
    budget.allocated_amount = payload.allocated_amount
    budget.disbursement_type = payload.disbursement_type
    budget.batches = [
        Batch(batch_id=spec.batch_id, sequence=spec.sequence, amount=spec.amount)
        for spec in payload.batches
    ]
    budget.approved_by = payload.approved_by
    budget.approved_at = payload.approved_at


def _apply_rejected(budget: Budget, event: Event) -> None:
    payload = BudgetRejected.model_validate(event.payload)
    budget.status = BudgetStatus.REJECTED
    budget.rejected_by = payload.rejected_by
    budget.rejected_at = payload.rejected_at
    budget.rejection_reason = payload.reason


def _apply_deleted(budget: Budget, event: Event) -> None:
    BudgetDeleted.model_validate(event.payload)
    budget.deleted = True


# ========== Disbursement engine ==========


def _apply_disbursement_initiated(budget: Budget, event: Event) -> None:
    payload = DisbursementInitiated.model_validate(event.payload)
    budget.transactions.append(
        Transaction(
            transaction_id=payload.transaction_id,
            reference=payload.reference,
            type=TransactionType.DISBURSEMENT,
            status=payload.status,
            amount=payload.amount,
            method=payload.method,
            destination=payload.destination,
            channel=payload.channel,
            channel_ref=payload.channel_ref,
            batch_id=payload.batch_id,
            actor_id=payload.initiated_by,
            created_at=payload.initiated_at,
            settled_at=payload.initiated_at
            if payload.status == TransactionStatus.COMPLETED
            else None,
        )
    )
    if payload.batch_id:
        batch = budget.find_batch(payload.batch_id)
        if batch is not None:
            batch.transaction_id = payload.transaction_id
            if payload.status == TransactionStatus.COMPLETED:
                batch.status = BatchStatus.DISBURSED
                batch.disbursed_at = payload.initiated_at


def _apply_disbursement_dispatched(budget: Budget, event: Event) -> None:
    payload = DisbursementDispatched.model_validate(event.payload)
    transaction = budget.find_transaction(payload.transaction_id)
    if transaction is not None:
        transaction.channel_ref = payload.channel_ref


def _apply_disbursement_settled(budget: Budget, event: Event) -> None:
    payload = DisbursementSettled.model_validate(event.payload)
    transaction = budget.find_transaction(payload.transaction_id)
    if transaction is None or transaction.status != TransactionStatus.PENDING:
        return
    transaction.status = payload.outcome
    transaction.settled_at = payload.settled_at
    if payload.channel_ref and not transaction.channel_ref:
        transaction.channel_ref = payload.channel_ref
    if payload.outcome != TransactionStatus.COMPLETED:
        transaction.failure_reason = payload.reason

    if transaction.batch_id:
        batch = budget.find_batch(transaction.batch_id)
        if batch is not None and batch.transaction_id == transaction.transaction_id:
            if payload.outcome == TransactionStatus.COMPLETED:
                batch.status = BatchStatus.DISBURSED
                batch.disbursed_at = payload.settled_at
            else:
                batch.transaction_id = None


def _apply_revoked(budget: Budget, event: Event) -> None:
    payload = BudgetRevoked.model_validate(event.payload)
    for reversal in payload.reversals:
        budget.transactions.append(
            Transaction(
                transaction_id=reversal.transaction_id,
                reference=reversal.reference,
                type=TransactionType.REVERSAL,
                status=TransactionStatus.COMPLETED,
                amount=reversal.amount,
                reverses=reversal.reverses,
                actor_id=payload.revoked_by,
                created_at=payload.revoked_at,
                settled_at=payload.revoked_at,
            )
        )
    for transaction_id in payload.cancelled_transaction_ids:
        transaction = budget.find_transaction(transaction_id)
        if transaction is not None and transaction.status == TransactionStatus.PENDING:
            transaction.status = TransactionStatus.CANCELLED
            transaction.settled_at = payload.revoked_at
            transaction.failure_reason = "budget revoked"
    budget.status = BudgetStatus.REVOKED
    budget.revoked_by = payload.revoked_by
    budget.revoked_at = payload.revoked_at
    budget.revocation_reason = payload.reason


def _apply_batches_restructured(budget: Budget, event: Event) -> None:
    payload = BatchesRestructured.model_validate(event.payload)
    replaced = set(payload.replaced_batch_ids)
    budget.batches = [b for b in budget.batches if b.batch_id not in replaced] + [
        Batch(batch_id=spec.batch_id, sequence=spec.sequence, amount=spec.amount)
        for spec in payload.batches
    ]


# ========== Supplementary workflow ==========


def _apply_supplementary_requested(budget: Budget, event: Event) -> None:
    payload = SupplementaryRequested.model_validate(event.payload)
    budget.supplementaries[payload.supplementary_id] = SupplementaryBudget(
        supplementary_id=payload.supplementary_id,
        amount=payload.amount,
        reason=payload.reason,
        source=payload.source,
        expenditure_id=payload.expenditure_id,
        requested_by=payload.requested_by,
        requested_at=payload.requested_at,
    )


def _apply_supplementary_decided(budget: Budget, event: Event) -> None:
    payload = SupplementaryDecided.model_validate(event.payload)
    supplementary = budget.supplementaries.get(payload.supplementary_id)
    if supplementary is None or supplementary.status != SupplementaryStatus.PENDING:
        return
    supplementary.status = payload.decision
    supplementary.decided_by = payload.decided_by
    supplementary.decided_at = payload.decided_at
    supplementary.decision_note = payload.note
    if payload.decision == SupplementaryStatus.APPROVED and payload.batch is not None:
        budget.batches.append(
            Batch(
                batch_id=payload.batch.batch_id,
                sequence=payload.batch.sequence,
                amount=payload.batch.amount,
            )
        )


# ========== Expenditure posting ==========


def _apply_expenditure_posted(budget: Budget, event: Event) -> None:
    payload = ExpenditurePosted.model_validate(event.payload)
    budget.expenditures[payload.expenditure_id] = Expenditure(
        expenditure_id=payload.expenditure_id,
        title=payload.title,
        description=payload.description,
        priority=payload.priority,
        items=[
            ExpenditureItem(
                budget_item_id=line.budget_item_id,
                spent_amount=line.spent_amount,
                planned_amount=line.planned_amount,
                overage=line.overage,
            )
            for line in payload.items
        ],
        flagged=payload.flagged,
        supplementary_id=payload.supplementary_id,
        posted_by=payload.posted_by,
        posted_at=payload.posted_at,
    )


def _apply_expenditure_voided(budget: Budget, event: Event) -> None:
    payload = ExpenditureVoided.model_validate(event.payload)
    expenditure = budget.expenditures.get(payload.expenditure_id)
    if expenditure is not None:
        expenditure.status = ExpenditureStatus.VOID
        expenditure.voided_by = payload.voided_by
        expenditure.voided_at = payload.voided_at
        expenditure.void_reason = payload.reason


_APPLIERS = {
    "BudgetSubmitted": _apply_submitted,
    "BudgetItemAdded": _apply_item_added,
    "BudgetItemCorrected": _apply_item_corrected,
    "RevisionRequested": _apply_revision_requested,
    "BudgetRevised": _apply_revised,
    "BudgetApproved": _apply_approved,
    "BudgetRejected": _apply_rejected,
    "BudgetDeleted": _apply_deleted,
    "DisbursementInitiated": _apply_disbursement_initiated,
    "DisbursementDispatched": _apply_disbursement_dispatched,
    "DisbursementSettled": _apply_disbursement_settled,
    "BudgetRevoked": _apply_revoked,
    "BatchesRestructured": _apply_batches_restructured,
    "SupplementaryRequested": _apply_supplementary_requested,
    "SupplementaryDecided": _apply_supplementary_decided,
    "ExpenditurePosted": _apply_expenditure_posted,
    "ExpenditureVoided": _apply_expenditure_voided,
}
