"""
Budget Module Handlers - Command→Event transformation for the approval workflow

Handlers are the decision-making layer. They:
1. Check the actor's capability (one authorize() call, first)
2. Validate invariants against state folded fresh from the stream
3. Generate events if valid
4. Return events for the facade to commit atomically

Handlers never touch storage; the facade reloads and re-runs them when a
concurrent writer got there first.
"""

from datetime import datetime
from typing import Callable

from fund_ledger.budget.commands import (
    AddBudgetItem,
    ApproveBudget,
    CorrectBudgetItem,
    CreateBudget,
    DeleteBudget,
    RejectBudget,
    RequestRevision,
    ReviseBudget,
    SubmitBudget,
)
from fund_ledger.budget.events import (
    BudgetApproved,
    BudgetCreated,
    BudgetDeleted,
    BudgetItemAdded,
    BudgetItemCorrected,
    BudgetRejected,
    BudgetRevised,
    BudgetSubmitted,
    ItemSpec,
    RevisionRequested,
)
from fund_ledger.budget.invariants import (
    build_batches,
    resolve_disbursement_type,
    validate_allocation,
    validate_deletable,
    validate_item_belongs,
    validate_item_editable,
    validate_pending_limit,
    validate_positive_amount,
    validate_revision_reason,
    validate_status,
    validate_title,
)
from fund_ledger.budget.models import Budget, BudgetStatus, DisbursementType
from fund_ledger.kernel.authz import Actor, Capability, authorize
from fund_ledger.kernel.errors import InvalidAmount, InvalidInput
from fund_ledger.kernel.events import Event, StreamWriter
from fund_ledger.kernel.ids import generate_id
from fund_ledger.kernel.money import ZERO
from fund_ledger.kernel.policy import LedgerPolicy
from fund_ledger.kernel.time import TimeProvider
from fund_ledger.pool.handlers import emit_pool_debit, pool_writer
from fund_ledger.pool.models import FundPool

BUDGET_STREAM_TYPE = "budget"

EDITABLE_STATUSES = (BudgetStatus.DRAFT, BudgetStatus.PENDING)


def budget_writer(
    budget: Budget,
    *,
    command_id: str,
    actor_id: str | None,
    occurred_at: datetime,
    id_factory: Callable[[], str] = generate_id,
) -> StreamWriter:
    """StreamWriter positioned after the budget's current version"""
    return StreamWriter(
        stream_id=budget.budget_id,
        stream_type=BUDGET_STREAM_TYPE,
        current_version=budget.version,
        command_id=command_id,
        actor_id=actor_id,
        occurred_at=occurred_at,
        id_factory=id_factory,
    )


class BudgetCommandHandlers:
    """
    Command handlers for the approval workflow

    Covers a budget from request to decision: create, submit, edit items,
    revision round-trips, approve (with pool debit and batch generation),
    reject and delete.
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
            id_factory: Generates budget, item and batch ids
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

    def handle_create_budget(
        self,
        command: CreateBudget,
        command_id: str,
        actor: Actor,
        owner_pending_count: int,
    ) -> list[Event]:
        """
        Handle CreateBudget command

        Validates:
        - Title length
        - Requested amount is positive (defaults to the item total)
        - Batch count within policy for BATCHES budgets
        - Owner's PENDING budget limit (only when submitting)

        Args:
            command: CreateBudget command
            command_id: Idempotency key
            actor: Owner-to-be
            owner_pending_count: PENDING budgets the actor already holds

        Returns:
            [BudgetCreated]

        Raises:
            InvalidInput: If the title is too short
            InvalidAmount: If the requested amount is missing or non-positive
            PendingBudgetLimitReached: If the owner is at the pending limit
        """
        authorize(actor, Capability.CREATE_BUDGET)
        now = self.time_provider.now()

        validate_title(command.title, self.policy)

        items = [
            ItemSpec(
                item_id=self.id_factory(),
                name=spec.name,
                unit_price=spec.unit_price,
                quantity=spec.quantity,
            )
            for spec in command.items
        ]
        items_total = sum((item.unit_price * item.quantity for item in items), ZERO)
        requested_amount = (
            command.requested_amount if command.requested_amount is not None else items_total
        )
        validate_positive_amount(requested_amount, "requested amount")

        batch_count = None
        if command.disbursement_type == DisbursementType.BATCHES:
            batch_count = command.batch_count or 1
            if batch_count > self.policy.max_batch_count:
                raise InvalidAmount(
                    requested_amount,
                    f"{batch_count} batches exceeds the maximum of {self.policy.max_batch_count}",
                )

        if command.submit:
            validate_pending_limit(actor.actor_id, owner_pending_count, self.policy)

        budget_id = self.id_factory()
        writer = StreamWriter(
            stream_id=budget_id,
            stream_type=BUDGET_STREAM_TYPE,
            current_version=0,
            command_id=command_id,
            actor_id=actor.actor_id,
            occurred_at=now,
            id_factory=self.id_factory,
        )
        writer.emit(
            "BudgetCreated",
            BudgetCreated(
                budget_id=budget_id,
                owner_id=actor.actor_id,
                title=command.title.strip(),
                description=command.description,
                requested_amount=requested_amount,
                priority=command.priority,
                disbursement_type=command.disbursement_type,
                batch_count=batch_count,
                items=items,
                submitted=command.submit,
                created_at=now,
            ),
        )
        return writer.events

    def handle_submit_budget(
        self,
        command: SubmitBudget,
        command_id: str,
        actor: Actor,
        budget: Budget,
        owner_pending_count: int,
    ) -> list[Event]:
        """
        Handle SubmitBudget command (DRAFT → PENDING)

        Raises:
            NotOwner: If actor doesn't own the budget
            InvalidTransition: If the budget is not DRAFT
            PendingBudgetLimitReached: If the owner is at the pending limit
        """
        authorize(actor, Capability.EDIT_BUDGET, budget)
        validate_status(budget, [BudgetStatus.DRAFT], "submit")
        validate_pending_limit(budget.owner_id, owner_pending_count, self.policy)

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BudgetSubmitted",
            BudgetSubmitted(budget_id=budget.budget_id, submitted_at=writer.occurred_at),
        )
        return writer.events

    def handle_add_budget_item(
        self,
        command: AddBudgetItem,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle AddBudgetItem command

        Raises:
            NotOwner: If actor doesn't own the budget
            InvalidTransition: If the budget is past review
        """
        authorize(actor, Capability.EDIT_BUDGET, budget)
        validate_status(budget, EDITABLE_STATUSES, "add items to")

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BudgetItemAdded",
            BudgetItemAdded(
                budget_id=budget.budget_id,
                item=ItemSpec(
                    item_id=self.id_factory(),
                    name=command.item.name,
                    unit_price=command.item.unit_price,
                    quantity=command.item.quantity,
                ),
                added_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_correct_budget_item(
        self,
        command: CorrectBudgetItem,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle CorrectBudgetItem command

        Owners may edit their items while the budget is DRAFT or PENDING,
        as long as no expenditure references the item. Admins may correct
        any item of a budget that isn't closed (REJECTED/REVOKED), with the
        reason recorded.

        Raises:
            NotOwner: If actor is neither the owner nor an admin
            BudgetItemNotFound: If the item isn't part of this budget
            BudgetItemLocked: If an owner edits an item spend references
            InvalidTransition: If the budget no longer accepts corrections
        """
        authorize(actor, Capability.CORRECT_BUDGET_ITEM, budget)
        if actor.is_admin:
            validate_status(
                budget,
                [s for s in BudgetStatus if s not in (BudgetStatus.REJECTED, BudgetStatus.REVOKED)],
                "correct items of",
            )
        else:
            validate_status(budget, EDITABLE_STATUSES, "edit items of")

        item = validate_item_belongs(budget, command.item_id)
        validate_item_editable(budget, item.item_id, by_admin=actor.is_admin)

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BudgetItemCorrected",
            BudgetItemCorrected(
                budget_id=budget.budget_id,
                item_id=item.item_id,
                name=command.name if command.name is not None else item.name,
                unit_price=command.unit_price
                if command.unit_price is not None
                else item.unit_price,
                quantity=command.quantity if command.quantity is not None else item.quantity,
                reason=command.reason,
                corrected_by=actor.actor_id,
                corrected_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_request_revision(
        self,
        command: RequestRevision,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle RequestRevision command

        Records a revision request; the budget stays PENDING so the owner
        can edit and the admin can still approve or reject.

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the budget is not PENDING
            InvalidInput: If the reason is too short
        """
        authorize(actor, Capability.REQUEST_REVISION, budget)
        validate_status(budget, [BudgetStatus.PENDING], "request revision of")
        validate_revision_reason(command.reason, self.policy)

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "RevisionRequested",
            RevisionRequested(
                budget_id=budget.budget_id,
                revision_id=self.id_factory(),
                reason=command.reason.strip(),
                requested_by=actor.actor_id,
                requested_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_revise_budget(
        self,
        command: ReviseBudget,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle ReviseBudget command

        Applies the owner's edits and resolves every open revision request.

        Raises:
            NotOwner: If actor doesn't own the budget
            InvalidTransition: If the budget is past review
            InvalidInput: If nothing changes or the new title is too short
            InvalidAmount: If the new requested amount is non-positive
        """
        authorize(actor, Capability.EDIT_BUDGET, budget)
        validate_status(budget, EDITABLE_STATUSES, "revise")

        changes = command.model_dump(exclude={"budget_id"}, exclude_none=True)
        if not changes:
            raise InvalidInput("revision", "no changes given")
        if command.title is not None:
            validate_title(command.title, self.policy)
        if command.requested_amount is not None:
            validate_positive_amount(command.requested_amount, "requested amount")

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BudgetRevised",
            BudgetRevised(
                budget_id=budget.budget_id,
                title=command.title.strip() if command.title is not None else None,
                description=command.description,
                requested_amount=command.requested_amount,
                priority=command.priority,
                resolved_revision_ids=[r.revision_id for r in budget.open_revisions()],
                revised_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_approve_budget(
        self,
        command: ApproveBudget,
        command_id: str,
        actor: Actor,
        budget: Budget,
        pool: FundPool,
    ) -> list[Event]:
        """
        Handle ApproveBudget command (PENDING → APPROVED)

        Commits the allocation and reserves it in the fund pool. For a
        BATCHES budget the allocation is split into batches here and the
        split is immutable except through an admin rebatch.

        Args:
            command: ApproveBudget command
            command_id: Idempotency key
            actor: Approving admin
            budget: Current budget state
            pool: Current fund pool state

        Returns:
            [BudgetApproved (budget stream), PoolDebited (fund-pool stream)]

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the budget is not PENDING
            InvalidAmount: If the allocation or batch split is invalid
            InsufficientPool: If the pool balance cannot cover the allocation
        """
        authorize(actor, Capability.APPROVE_BUDGET, budget)
        validate_status(budget, [BudgetStatus.PENDING], "approve")

        allocated = (
            command.allocated_amount
            if command.allocated_amount is not None
            else budget.requested_amount
        )
        validate_allocation(budget, allocated)

        disbursement_type = resolve_disbursement_type(budget, command.disbursement_type)
        batches = []
        if disbursement_type == DisbursementType.BATCHES:
            batches = build_batches(
                allocated,
                batch_count=command.batch_count or budget.batch_count,
                batch_amounts=command.batch_amounts,
                policy=self.policy,
                id_factory=self.id_factory,
            )

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BudgetApproved",
            BudgetApproved(
                budget_id=budget.budget_id,
                allocated_amount=allocated,
                disbursement_type=disbursement_type,
                batches=batches,
                approved_by=actor.actor_id,
                approved_at=writer.occurred_at,
            ),
        )

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
            amount=allocated,
            budget_id=budget.budget_id,
            reason="allocation",
            reference_id=budget.budget_id,
        )
        return writer.events + pool_events.events

    def handle_reject_budget(
        self,
        command: RejectBudget,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle RejectBudget command (PENDING → REJECTED, terminal)

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the budget is not PENDING
        """
        authorize(actor, Capability.REJECT_BUDGET, budget)
        validate_status(budget, [BudgetStatus.PENDING], "reject")

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BudgetRejected",
            BudgetRejected(
                budget_id=budget.budget_id,
                reason=command.reason,
                rejected_by=actor.actor_id,
                rejected_at=writer.occurred_at,
            ),
        )
        return writer.events

    def handle_delete_budget(
        self,
        command: DeleteBudget,
        command_id: str,
        actor: Actor,
        budget: Budget,
    ) -> list[Event]:
        """
        Handle DeleteBudget command

        The stream is closed with BudgetDeleted; the events stay in the log.

        Raises:
            NotOwner: If actor is neither the owner nor an admin
            InvalidTransition: If the budget is not DRAFT
            BudgetHasDependents: If ledger records are attached
        """
        authorize(actor, Capability.DELETE_BUDGET, budget)
        validate_deletable(budget)

        writer = self._writer(budget, command_id, actor)
        writer.emit(
            "BudgetDeleted",
            BudgetDeleted(
                budget_id=budget.budget_id,
                deleted_by=actor.actor_id,
                deleted_at=writer.occurred_at,
            ),
        )
        return writer.events
