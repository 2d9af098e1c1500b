"""
Supplementary Module Handlers - Command→Event transformation

Approval is the one place where the ceiling moves: SupplementaryDecided
and the matching PoolDebited commit together, so the effective allocation
and the pool never disagree about who holds the money.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable

from fund_ledger.budget.events import BatchSpec
from fund_ledger.budget.handlers import budget_writer
from fund_ledger.budget.models import (
    Budget,
    DisbursementType,
    SupplementarySource,
    SupplementaryStatus,
)
from fund_ledger.kernel.authz import Actor, Capability, authorize
from fund_ledger.kernel.events import Event, StreamWriter
from fund_ledger.kernel.ids import generate_id
from fund_ledger.kernel.policy import LedgerPolicy
from fund_ledger.kernel.time import TimeProvider
from fund_ledger.pool.handlers import emit_pool_debit, pool_writer
from fund_ledger.pool.models import FundPool
from fund_ledger.supplementary.commands import DecideSupplementary, RequestSupplementary
from fund_ledger.supplementary.events import SupplementaryDecided, SupplementaryRequested
from fund_ledger.supplementary.invariants import (
    validate_budget_accepts_supplementary,
    validate_pending_supplementary,
    validate_supplementary_amount,
)


def emit_supplementary_request(
    writer: StreamWriter,
    budget: Budget,
    *,
    supplementary_id: str,
    amount: Decimal,
    reason: str,
    source: SupplementarySource,
    requested_by: str,
    requested_at: datetime,
    expenditure_id: str | None = None,
) -> Event:
    """Append a SupplementaryRequested event to a budget writer"""
    validate_supplementary_amount(amount)
    return writer.emit(
        "SupplementaryRequested",
        SupplementaryRequested(
            budget_id=budget.budget_id,
            supplementary_id=supplementary_id,
            amount=amount,
            reason=reason,
            source=source,
            expenditure_id=expenditure_id,
            requested_by=requested_by,
            requested_at=requested_at,
        ),
    )


class SupplementaryCommandHandlers:
    """Command handlers for the supplementary budget workflow"""

    def __init__(
        self,
        time_provider: TimeProvider,
        policy: LedgerPolicy,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self.time_provider = time_provider
        self.policy = policy
        self.id_factory = id_factory

    def handle_request_supplementary(
        self,
        command: RequestSupplementary,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle RequestSupplementary command

        Returns:
            [SupplementaryRequested]

        Raises:
            NotOwner: If actor doesn't own the budget
            InvalidTransition: If the budget isn't APPROVED, PARTIALLY_DISBURSED or DISBURSED
            InvalidAmount: If amount <= 0
        """
        authorize(actor, Capability.REQUEST_SUPPLEMENTARY, budget)
        validate_budget_accepts_supplementary(budget)

        writer = budget_writer(
            budget,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=self.time_provider.now(),
            id_factory=self.id_factory,
        )
        emit_supplementary_request(
            writer,
            budget,
            supplementary_id=self.id_factory(),
            amount=command.amount,
            reason=command.reason,
            source=SupplementarySource.OWNER,
            requested_by=actor.actor_id,
            requested_at=writer.occurred_at,
        )
        return writer.events

    def handle_decide_supplementary(
        self,
        command: DecideSupplementary,
        command_id: str,
        actor: Actor,
        budget: Budget,
        pool: FundPool,
    ) -> list[Event]:
        """
        Handle DecideSupplementary command

        On APPROVED the effective allocation grows by the request amount,
        the fund pool is debited by the same amount and a BATCHES budget
        gets one more batch so its batches keep summing to the effective
        allocation. A DISBURSED budget regains headroom and its derived
        status drops back to PARTIALLY_DISBURSED.

        Rejection is allowed whatever the budget's state; approval needs a
        live allocation.

        Args:
            command: DecideSupplementary command
            command_id: Idempotency key
            actor: Deciding admin
            budget: Budget owning the request
            pool: Current fund pool state

        Returns:
            [SupplementaryDecided] plus [PoolDebited] when approved

        Raises:
            NotAuthorized: If actor is not an admin
            SupplementaryNotFound: If the budget has no such request
            InvalidTransition: If the request was already decided, or the
                budget can no longer be topped up
            InsufficientPool: If the pool cannot cover an approval
        """
        authorize(actor, Capability.DECIDE_SUPPLEMENTARY, budget)
        supplementary = validate_pending_supplementary(budget, command.supplementary_id)
        approved = command.decision == SupplementaryStatus.APPROVED
        if approved:
            validate_budget_accepts_supplementary(budget)

        batch = None
        if approved and budget.disbursement_type == DisbursementType.BATCHES:
            batch = BatchSpec(
                batch_id=self.id_factory(),
                sequence=max((b.sequence for b in budget.batches), default=0) + 1,
                amount=supplementary.amount,
            )

        writer = budget_writer(
            budget,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=self.time_provider.now(),
            id_factory=self.id_factory,
        )
        writer.emit(
            "SupplementaryDecided",
            SupplementaryDecided(
                budget_id=budget.budget_id,
                supplementary_id=supplementary.supplementary_id,
                decision=command.decision,
                amount=supplementary.amount,
                note=command.note,
                batch=batch,
                requested_by=supplementary.requested_by,
                decided_by=actor.actor_id,
                decided_at=writer.occurred_at,
            ),
        )
        if not approved:
            return writer.events

        pool_events = pool_writer(
            pool,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=writer.occurred_at,
            id_factory=self.id_factory,
        )
        emit_pool_debit(
            pool_events,
            pool,
            amount=supplementary.amount,
            budget_id=budget.budget_id,
            reason="supplementary",
            reference_id=supplementary.supplementary_id,
        )
        return writer.events + pool_events.events
