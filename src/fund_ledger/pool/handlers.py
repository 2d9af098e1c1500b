"""
Fund Pool Handlers - Command→Event transformation for the shared balance
and the remittances that feed it

The pool is a single stream contended by every approval in the system.
Its stream version serialises writers globally: two approvals that both
read balance B cannot both commit a debit against it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable

from fund_ledger.budget.invariants import validate_pool_covers
from fund_ledger.kernel.authz import Actor, Capability, authorize
from fund_ledger.kernel.events import Event, StreamWriter
from fund_ledger.kernel.ids import generate_id
from fund_ledger.kernel.policy import LedgerPolicy
from fund_ledger.kernel.time import TimeProvider
from fund_ledger.pool.commands import (
    AdjustPool,
    RejectRemittance,
    SubmitRemittance,
    VerifyRemittance,
)
from fund_ledger.pool.events import (
    PoolAdjusted,
    PoolCredited,
    PoolDebited,
    PoolRemittanceReceived,
    RemittanceRejected,
    RemittanceSubmitted,
    RemittanceVerified,
)
from fund_ledger.pool.invariants import (
    validate_adjustment,
    validate_remittance_amount,
    validate_remittance_pending,
)
from fund_ledger.pool.models import (
    POOL_STREAM_ID,
    POOL_STREAM_TYPE,
    REMITTANCE_STREAM_TYPE,
    FundPool,
    Remittance,
)


def pool_writer(
    pool: FundPool,
    *,
    command_id: str,
    actor_id: str | None,
    occurred_at: datetime,
    id_factory: Callable[[], str] = generate_id,
) -> StreamWriter:
    """StreamWriter positioned after the pool's current version"""
    return StreamWriter(
        stream_id=POOL_STREAM_ID,
        stream_type=POOL_STREAM_TYPE,
        current_version=pool.version,
        command_id=command_id,
        actor_id=actor_id,
        occurred_at=occurred_at,
        id_factory=id_factory,
    )


def emit_pool_debit(
    writer: StreamWriter,
    pool: FundPool,
    *,
    amount: Decimal,
    budget_id: str,
    reason: str,
    reference_id: str,
) -> Event:
    """
    Reserve pool capacity for a budget

    Raises:
        InsufficientPool: If the pool balance cannot cover amount
    """
    validate_pool_covers(pool.balance, amount)
    return writer.emit(
        "PoolDebited",
        PoolDebited(
            amount=amount,
            budget_id=budget_id,
            reason=reason,
            reference_id=reference_id,
            balance_after=pool.balance - amount,
            debited_at=writer.occurred_at,
        ),
    )


def emit_pool_credit(
    writer: StreamWriter,
    pool: FundPool,
    *,
    amount: Decimal,
    budget_id: str,
    reason: str,
) -> Event:
    """Return reserved capacity to the pool"""
    return writer.emit(
        "PoolCredited",
        PoolCredited(
            amount=amount,
            budget_id=budget_id,
            reason=reason,
            balance_after=pool.balance + amount,
            credited_at=writer.occurred_at,
        ),
    )


class PoolCommandHandlers:
    """Command handlers for the fund pool"""

    def __init__(
        self,
        time_provider: TimeProvider,
        policy: LedgerPolicy,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self.time_provider = time_provider
        self.policy = policy
        self.id_factory = id_factory

    def handle_adjust_pool(
        self,
        command: AdjustPool,
        command_id: str,
        actor: Actor,
        pool: FundPool,
    ) -> list[Event]:
        """
        Handle AdjustPool command (admin only)

        Args:
            command: AdjustPool command
            command_id: Idempotency key
            actor: Who issued the command
            pool: Current pool state (fresh from the stream)

        Returns:
            [PoolAdjusted]

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidAmount: If delta is zero
            InsufficientBalance: If the balance would go negative
        """
        authorize(actor, Capability.ADJUST_POOL)
        validate_adjustment(pool, command.delta)

        writer = pool_writer(
            pool,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=self.time_provider.now(),
            id_factory=self.id_factory,
        )
        writer.emit(
            "PoolAdjusted",
            PoolAdjusted(
                delta=command.delta,
                note=command.note,
                balance_after=pool.balance + command.delta,
                adjusted_by=actor.actor_id,
                adjusted_at=writer.occurred_at,
            ),
        )
        return writer.events

    def _remittance_writer(
        self, remittance_id: str, version: int, command_id: str, actor: Actor
    ) -> StreamWriter:
        return StreamWriter(
            stream_id=remittance_id,
            stream_type=REMITTANCE_STREAM_TYPE,
            current_version=version,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=self.time_provider.now(),
            id_factory=self.id_factory,
        )

    def handle_submit_remittance(
        self,
        command: SubmitRemittance,
        command_id: str,
        actor: Actor,
    ) -> list[Event]:
        """
        Handle SubmitRemittance command (any user)

        Returns:
            [RemittanceSubmitted] on a new remittance stream

        Raises:
            NotAuthorized: For the SYSTEM actor
            InvalidAmount: If amount <= 0
        """
        authorize(actor, Capability.SUBMIT_REMITTANCE)
        validate_remittance_amount(command.amount)

        remittance_id = self.id_factory()
        writer = self._remittance_writer(remittance_id, 0, command_id, actor)
        writer.emit(
            "RemittanceSubmitted",
            RemittanceSubmitted(
                remittance_id=remittance_id,
                amount=command.amount,
                note=command.note,
                proof=command.proof,
                submitted_by=actor.actor_id,
                submitted_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_verify_remittance(
        self,
        command: VerifyRemittance,
        command_id: str,
        actor: Actor,
        remittance: Remittance,
        pool: FundPool,
    ) -> list[Event]:
        """
        Handle VerifyRemittance command (admin only)

        The remittance and the pool credit commit together: a verified
        remittance whose money never reached the pool cannot exist.

        Returns:
            [RemittanceVerified, PoolRemittanceReceived]

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the remittance is no longer PENDING
        """
        authorize(actor, Capability.VERIFY_REMITTANCE)
        validate_remittance_pending(remittance, "verify")

        writer = self._remittance_writer(
            remittance.remittance_id, remittance.version, command_id, actor
        )
        writer.emit(
            "RemittanceVerified",
            RemittanceVerified(
                remittance_id=remittance.remittance_id,
                amount=remittance.amount,
                submitted_by=remittance.submitted_by,
                note=command.note,
                verified_by=actor.actor_id,
                verified_at=writer.occurred_at,
            ),
        )
        pool_events = pool_writer(
            pool,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=writer.occurred_at,
            id_factory=self.id_factory,
        )
        pool_events.emit(
            "PoolRemittanceReceived",
            PoolRemittanceReceived(
                amount=remittance.amount,
                remittance_id=remittance.remittance_id,
                remitted_by=remittance.submitted_by,
                balance_after=pool.balance + remittance.amount,
                received_at=writer.occurred_at,
            ),
        )
        return writer.events + pool_events.events

    def handle_reject_remittance(
        self,
        command: RejectRemittance,
        command_id: str,
        actor: Actor,
        remittance: Remittance,
    ) -> list[Event]:
        """
        Handle RejectRemittance command (admin only)

        Returns:
            [RemittanceRejected]

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the remittance is no longer PENDING
        """
        authorize(actor, Capability.VERIFY_REMITTANCE)
        validate_remittance_pending(remittance, "reject")

        writer = self._remittance_writer(
            remittance.remittance_id, remittance.version, command_id, actor
        )
        writer.emit(
            "RemittanceRejected",
            RemittanceRejected(
                remittance_id=remittance.remittance_id,
                amount=remittance.amount,
                submitted_by=remittance.submitted_by,
                note=command.note,
                rejected_by=actor.actor_id,
                rejected_at=writer.occurred_at,
            ),
        )
        return writer.events
