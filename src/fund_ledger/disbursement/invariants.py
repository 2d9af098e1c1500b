"""
Disbursement Module Invariants - never pay out more than was allocated

Headroom is always computed from the folded transaction ledger at call
time. Combined with the per-stream version check in the event store, two
racing disbursements can never both fit into the same headroom.
"""

from decimal import Decimal

from fund_ledger.budget.models import Batch, BatchStatus, Budget, DisbursementType
from fund_ledger.kernel.errors import (
    BatchAmountMismatch,
    InsufficientAllocation,
    InvalidAmount,
    InvalidTransition,
)
from fund_ledger.kernel.money import ZERO


def validate_disbursement_amount(amount: Decimal) -> None:
    """
    Raises:
        InvalidAmount: If amount <= 0
    """
    if amount <= ZERO:
        raise InvalidAmount(amount, "disbursement amount must be greater than zero")


def validate_headroom(budget: Budget, amount: Decimal) -> None:
    """
    Amount must fit in effective allocation - disbursed - in-flight

    Raises:
        InsufficientAllocation: If amount exceeds the budget's headroom
    """
    headroom = budget.headroom()
    if amount > headroom:
        raise InsufficientAllocation(
            budget_id=budget.budget_id,
            requested=amount,
            available=headroom,
            context="disbursement",
        )


def validate_batch_amount(budget: Budget, amount: Decimal) -> Batch:
    """
    A BATCHES budget pays its next pending batch, exactly

    Returns:
        The batch this disbursement pays

    Raises:
        InvalidTransition: If no batch is pending, or the next one is
            already reserved by an in-flight disbursement
        BatchAmountMismatch: If amount differs from the batch amount
    """
    batch = budget.next_pending_batch()
    if batch is None or batch.is_reserved:
        raise InvalidTransition(
            entity="batch",
            entity_id=batch.batch_id if batch else budget.budget_id,
            current_status="IN_FLIGHT" if batch else "NONE_PENDING",
            action="disburse",
            allowed=[BatchStatus.PENDING.value],
        )
    if amount != batch.amount:
        raise BatchAmountMismatch(
            budget_id=budget.budget_id,
            batch_id=batch.batch_id,
            amount=amount,
            expected=batch.amount,
        )
    return batch


def validate_rebatch(budget: Budget, amounts: list[Decimal]) -> list[Batch]:
    """
    New batches must cover exactly what is left to pay

    Returns:
        The PENDING, unreserved batches being replaced

    Raises:
        InvalidTransition: If the budget isn't BATCHES or a batch is in flight
        InvalidAmount: If amounts are non-positive or don't sum correctly
    """
    if budget.disbursement_type != DisbursementType.BATCHES:
        raise InvalidTransition(
            entity="budget",
            entity_id=budget.budget_id,
            current_status=budget.disbursement_type.value,
            action="rebatch",
            allowed=[DisbursementType.BATCHES.value],
        )
    pending = [b for b in budget.batches if b.status == BatchStatus.PENDING]
    reserved = [b for b in pending if b.is_reserved]
    if reserved:
        raise InvalidTransition(
            entity="batch",
            entity_id=reserved[0].batch_id,
            current_status="IN_FLIGHT",
            action="rebatch",
            allowed=[BatchStatus.PENDING.value],
        )
    for amount in amounts:
        if amount <= ZERO:
            raise InvalidAmount(amount, "batch amount must be greater than zero")
    remaining = budget.undisbursed_amount()
    total = sum(amounts, ZERO)
    if total != remaining:
        raise InvalidAmount(total, f"batch amounts must sum to the undisbursed {remaining}")
    return pending
