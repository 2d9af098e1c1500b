"""
Expenditure Module Handlers - Command→Event transformation for spend
"""

from typing import Callable

from fund_ledger.budget.handlers import budget_writer
from fund_ledger.budget.invariants import validate_status
from fund_ledger.budget.models import FUNDED_STATUSES, Budget, SupplementarySource
from fund_ledger.expenditure.commands import PostExpenditure, VoidExpenditure
from fund_ledger.expenditure.events import ExpenditurePosted, ExpenditureVoided
from fund_ledger.expenditure.invariants import budget_excess, price_lines, validate_voidable
from fund_ledger.kernel.authz import Actor, Capability, authorize
from fund_ledger.kernel.errors import InsufficientAllocation
from fund_ledger.kernel.events import Event
from fund_ledger.kernel.ids import generate_id
from fund_ledger.kernel.money import ZERO
from fund_ledger.kernel.policy import LedgerPolicy
from fund_ledger.kernel.time import TimeProvider
from fund_ledger.supplementary.handlers import emit_supplementary_request


class ExpenditureCommandHandlers:
    """Command handlers for expenditure posting and voiding"""

    def __init__(
        self,
        time_provider: TimeProvider,
        policy: LedgerPolicy,
        id_factory: Callable[[], str] = generate_id,
    ) -> None:
        self.time_provider = time_provider
        self.policy = policy
        self.id_factory = id_factory

    def handle_post_expenditure(
        self,
        command: PostExpenditure,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle PostExpenditure command

        Spend above a line item's plan is recorded and flagged. Spend that
        takes the budget past its effective allocation (plus pending
        supplementary requests) is refused unless the caller asked for a
        supplementary, in which case the request for
        max(item overage, budget excess) is written in the same commit.

        Args:
            command: PostExpenditure command
            command_id: Idempotency key
            actor: Budget owner
            budget: Current budget state

        Returns:
            [ExpenditurePosted] or [ExpenditurePosted, SupplementaryRequested]

        Raises:
            NotOwner: If actor doesn't own the budget
            InvalidTransition: If the budget isn't funded
            BudgetItemNotFound: If a line references a foreign item
            InvalidAmount: If a spent amount is <= 0
            InsufficientAllocation: If the budget overruns and no
                supplementary was requested
        """
        authorize(actor, Capability.POST_EXPENDITURE, budget)
        validate_status(budget, sorted(FUNDED_STATUSES), "post expenditure against")

        lines = price_lines(budget, command.items)
        amount = sum((line.spent_amount for line in lines), ZERO)
        item_overage = sum((line.overage for line in lines), ZERO)
        excess = budget_excess(budget, amount)

        if excess > ZERO and not command.request_supplementary:
            available = (
                budget.effective_allocation()
                + budget.pending_supplementary_total()
                - budget.spent_amount()
            )
            raise InsufficientAllocation(
                budget_id=budget.budget_id,
                requested=amount,
                available=max(ZERO, available),
                context="expenditure",
            )

        supplementary_amount = max(item_overage, excess)
        supplementary_id = None
        if command.request_supplementary and supplementary_amount > ZERO:
            supplementary_id = self.id_factory()

        writer = budget_writer(
            budget,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=self.time_provider.now(),
            id_factory=self.id_factory,
        )
        expenditure_id = self.id_factory()
        writer.emit(
            "ExpenditurePosted",
            ExpenditurePosted(
                budget_id=budget.budget_id,
                expenditure_id=expenditure_id,
                title=command.title,
                description=command.description,
                priority=command.priority,
                items=lines,
                amount=amount,
                flagged=item_overage > ZERO or excess > ZERO,
                supplementary_id=supplementary_id,
                posted_by=actor.actor_id,
                posted_at=writer.occurred_at,
            ),
        )
        if supplementary_id is not None:
            emit_supplementary_request(
                writer,
                budget,
                supplementary_id=supplementary_id,
                amount=supplementary_amount,
                reason=command.supplementary_reason or f"Expenditure overspend: {command.title}",
                source=SupplementarySource.EXPENDITURE,
                requested_by=actor.actor_id,
                requested_at=writer.occurred_at,
                expenditure_id=expenditure_id,
            )
        return writer.events

    def handle_void_expenditure(
        self,
        command: VoidExpenditure,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle VoidExpenditure command

        Raises:
            NotOwner: If actor is neither the owner nor an admin
            ExpenditureNotFound: If the budget has no such expenditure
            InvalidTransition: If it is already VOID
        """
        authorize(actor, Capability.VOID_EXPENDITURE, budget)
        validate_voidable(budget, command.expenditure_id)

        writer = budget_writer(
            budget,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=self.time_provider.now(),
            id_factory=self.id_factory,
        )
        writer.emit(
            "ExpenditureVoided",
            ExpenditureVoided(
                budget_id=budget.budget_id,
                expenditure_id=command.expenditure_id,
                reason=command.reason,
                voided_by=actor.actor_id,
                voided_at=writer.occurred_at,
            ),
        )
        return writer.events
