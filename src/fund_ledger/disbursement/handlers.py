"""
Disbursement Module Handlers - Command→Event transformation for money out

Handlers decide against a budget folded fresh from its stream. The
facade re-runs them after a version conflict, so a disbursement that lost
a race is re-validated against the winner's transaction and fails with
InsufficientAllocation instead of overshooting.

Asynchronous channels are never invoked here: the PENDING transaction is
committed first (reserving headroom), then the facade talks to the
channel, then records the acknowledgment or the failure.
"""

from typing import Callable

from fund_ledger.budget.events import BatchSpec
from fund_ledger.budget.handlers import budget_writer
from fund_ledger.budget.invariants import validate_status
from fund_ledger.budget.models import (
    Budget,
    BudgetStatus,
    DisbursementType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from fund_ledger.disbursement.channel import DisbursementChannel
from fund_ledger.disbursement.commands import Disburse, Rebatch, RevokeBudget, SettleDisbursement
from fund_ledger.disbursement.events import (
    BatchesRestructured,
    BudgetRevoked,
    DisbursementDispatched,
    DisbursementInitiated,
    DisbursementSettled,
    ReversalSpec,
)
from fund_ledger.disbursement.invariants import (
    validate_batch_amount,
    validate_disbursement_amount,
    validate_headroom,
    validate_rebatch,
)
from fund_ledger.kernel.authz import Actor, Capability, authorize
from fund_ledger.kernel.errors import InvalidAmount, TransactionNotFound
from fund_ledger.kernel.events import Event, StreamWriter
from fund_ledger.kernel.ids import generate_id, reversal_reference
from fund_ledger.kernel.logging import get_logger
from fund_ledger.kernel.money import ZERO
from fund_ledger.kernel.policy import LedgerPolicy
from fund_ledger.kernel.time import TimeProvider
from fund_ledger.pool.handlers import emit_pool_credit, pool_writer
from fund_ledger.pool.models import FundPool

logger = get_logger(__name__)

DISBURSABLE_STATUSES = (BudgetStatus.APPROVED, BudgetStatus.PARTIALLY_DISBURSED)


class DisbursementCommandHandlers:
    """
    Command handlers for the disbursement engine

    Covers disburse, channel acknowledgment, settlement (callback or
    reconciliation), revocation and batch restructuring.
    """

    def __init__(
        self,
        time_provider: TimeProvider,
        policy: LedgerPolicy,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        """
        Initialize handlers with dependencies

        Args:
            time_provider: For timestamps (injectable for testing)
            policy: Ledger parameters
            id_factory: Generates transaction and batch ids
        """
        self.time_provider = time_provider
        self.policy = policy
        self.id_factory = id_factory

    def _writer(self, budget: Budget, command_id: str, actor: Actor) -> StreamWriter:
        return budget_writer(
            budget,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=self.time_provider.now(),
            id_factory=self.id_factory,
        )

    def handle_disburse(
        self,
        command: Disburse,
        command_id: str,
        actor: Actor,
        budget: Budget,
        channel: DisbursementChannel,
        reference: str,
        channel_ref: str | None = None,
    ) -> list[Event]:
        """
        Handle Disburse command

        Validates:
        - Actor is an admin
        - Budget is APPROVED or PARTIALLY_DISBURSED (a DISBURSED budget has
          no headroom left, so it is refused with InsufficientAllocation)
        - Amount is positive and fits the headroom
        - BATCHES budgets pay their next pending batch exactly

        Channels are never called from here: this runs again on every
        version-conflict retry. For a synchronous channel the caller passes
        the channel_ref it already obtained and the transaction is written
        COMPLETED. Otherwise the transaction is written PENDING and holds
        its headroom and batch until settled.

        Args:
            command: Disburse command
            command_id: Idempotency key
            actor: Disbursing admin
            budget: Current budget state
            channel: Channel chosen for the disbursement method
            reference: Our disbursement reference
            channel_ref: Reference a synchronous channel returned for the payment

        Returns:
            [DisbursementInitiated]

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the budget can't be disbursed from
            InvalidAmount: If amount <= 0
            BatchAmountMismatch: If amount differs from the next batch
            InsufficientAllocation: If amount exceeds the headroom
        """
        authorize(actor, Capability.DISBURSE, budget)
        if budget.status == BudgetStatus.DISBURSED:
            validate_disbursement_amount(command.amount)
            validate_headroom(budget, command.amount)
        validate_status(budget, DISBURSABLE_STATUSES, "disburse")
        validate_disbursement_amount(command.amount)

        batch_id = None
        if budget.disbursement_type == DisbursementType.BATCHES:
            batch_id = validate_batch_amount(budget, command.amount).batch_id
        validate_headroom(budget, command.amount)

        status = TransactionStatus.COMPLETED if channel.synchronous else TransactionStatus.PENDING

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "DisbursementInitiated",
            DisbursementInitiated(
                budget_id=budget.budget_id,
                transaction_id=self.id_factory(),
                reference=reference,
                amount=command.amount,
                method=command.method,
                destination=command.destination,
                channel=channel.name,
                channel_ref=channel_ref,
                batch_id=batch_id,
                status=status,
                initiated_by=actor.actor_id,
                initiated_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_dispatched(
        self,
        budget: Budget,
        transaction_id: str,
        channel_ref: str,
        command_id: str,
        actor: Actor,
    ) -> list[Event]:
        """
        Record the channel's acknowledgment of a PENDING disbursement

        Returns:
            [DisbursementDispatched], or [] if the transaction already settled
        """
        transaction = self._require_transaction(budget, transaction_id)
        if transaction.status != TransactionStatus.PENDING:
            return []

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "DisbursementDispatched",
            DisbursementDispatched(
                budget_id=budget.budget_id,
                transaction_id=transaction_id,
                channel_ref=channel_ref,
                dispatched_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_settle(
        self,
        command: SettleDisbursement,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle a settlement callback (or a reconciliation verdict)

        Settling is idempotent: a transaction that is no longer PENDING is
        left alone and no events are produced.

        Args:
            command: SettleDisbursement command
            command_id: Idempotency key (settle:<channel_ref>)
            actor: SYSTEM (channel callback, tick) or an admin
            budget: Budget owning the transaction

        Returns:
            [DisbursementSettled], or [] for a replayed settlement

        Raises:
            NotAuthorized: If actor is neither SYSTEM nor admin
            TransactionNotFound: If no transaction carries channel_ref
        """
        authorize(actor, Capability.SETTLE_DISBURSEMENT, budget)
        transaction = budget.find_by_reference(command.channel_ref)
        if transaction is None:
            raise TransactionNotFound(command.channel_ref)

        if transaction.status != TransactionStatus.PENDING:
            logger.info(
                "Settlement ignored, transaction already final",
                transaction_id=transaction.transaction_id,
                status=transaction.status.value,
                outcome=command.outcome.value,
            )
            return []

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "DisbursementSettled",
            DisbursementSettled(
                budget_id=budget.budget_id,
                transaction_id=transaction.transaction_id,
                channel_ref=command.channel_ref,
                outcome=command.outcome,
                reason=command.reason,
                settled_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_channel_failure(
        self,
        budget: Budget,
        transaction_id: str,
        reason: str,
        command_id: str,
        actor: Actor,
    ) -> list[Event]:
        """
        Mark a PENDING disbursement FAILED after the channel refused it

        The failure is recorded, never retried: it surfaces to the admin.

        Returns:
            [DisbursementSettled(FAILED)], or [] if the transaction already settled
        """
        transaction = self._require_transaction(budget, transaction_id)
        if transaction.status != TransactionStatus.PENDING:
            return []

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "DisbursementSettled",
            DisbursementSettled(
                budget_id=budget.budget_id,
                transaction_id=transaction_id,
                outcome=TransactionStatus.FAILED,
                reason=reason,
                settled_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_revoke(
        self,
        command: RevokeBudget,
        command_id: str,
        actor: Actor,
        budget: Budget,
        pool: FundPool,
    ) -> list[Event]:
        """
        Handle RevokeBudget command (→ REVOKED, terminal)

        Every COMPLETED disbursement gets a REVERSAL, every PENDING one is
        CANCELLED, and the whole reservation (the effective allocation)
        returns to the fund pool in the same commit.

        Returns:
            [BudgetRevoked (budget stream), PoolCredited (fund-pool stream)]

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the budget is not APPROVED or PARTIALLY_DISBURSED
        """
        authorize(actor, Capability.REVOKE_BUDGET, budget)
        validate_status(budget, DISBURSABLE_STATUSES, "revoke")

        reversed_ids = {t.reverses for t in budget.transactions if t.reverses}
        reversals = [
            ReversalSpec(
                transaction_id=self.id_factory(),
                reverses=t.transaction_id,
                reference=reversal_reference(t.reference),
                amount=t.amount,
            )
            for t in _completed_disbursements(budget)
            if t.transaction_id not in reversed_ids
        ]
        cancelled = [t.transaction_id for t in budget.pending_transactions()]
        pool_credit = budget.effective_allocation()

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BudgetRevoked",
            BudgetRevoked(
                budget_id=budget.budget_id,
                reason=command.reason,
                reversals=reversals,
                cancelled_transaction_ids=cancelled,
                pool_credit=pool_credit,
                revoked_by=actor.actor_id,
                revoked_at=writer.occurred_at,
            ),
        )

        pool_events = pool_writer(
            pool,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=writer.occurred_at,
            id_factory=self.id_factory,
        )
        emit_pool_credit(
            pool_events,
            pool,
            amount=pool_credit,
            budget_id=budget.budget_id,
            reason="revocation",
        )
        return writer.events + pool_events.events

    def handle_rebatch(
        self,
        command: Rebatch,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle Rebatch command (admin override of the batch split)

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the budget isn't funded, isn't BATCHES,
                or has a batch in flight
            InvalidAmount: If the amounts don't cover the undisbursed allocation
        """
        authorize(actor, Capability.REBATCH, budget)
        validate_status(budget, DISBURSABLE_STATUSES, "rebatch")
        replaced = validate_rebatch(budget, command.amounts)
        if len(command.amounts) > self.policy.max_batch_count:
            raise InvalidAmount(
                sum(command.amounts, ZERO),
                f"{len(command.amounts)} batches exceeds the maximum of "
                f"{self.policy.max_batch_count}",
            )

        next_sequence = max((b.sequence for b in budget.batches), default=0) + 1
        batches = [
            BatchSpec(batch_id=self.id_factory(), sequence=next_sequence + index, amount=amount)
            for index, amount in enumerate(command.amounts)
        ]

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BatchesRestructured",
            BatchesRestructured(
                budget_id=budget.budget_id,
                replaced_batch_ids=[b.batch_id for b in replaced],
                batches=batches,
                reason=command.reason,
                restructured_by=actor.actor_id,
                restructured_at=writer.occurred_at,
            ),
        )
        return writer.events

    def _require_transaction(self, budget: Budget, transaction_id: str) -> Transaction:
        transaction = budget.find_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction


def _completed_disbursements(budget: Budget) -> list[Transaction]:
    return [
        t
        for t in budget.transactions
        if t.type == TransactionType.DISBURSEMENT and t.status == TransactionStatus.COMPLETED
    ]
