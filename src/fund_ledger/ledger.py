"""
FundLedger - Main façade class

This is the primary interface for the budget ledger. It hides event
sourcing, projections and command handling behind one object per
database.

Every write follows the same unit of work:
1. Load the affected streams fresh from the event store
2. Ask the pure handler for events (authorization + invariants)
3. Append them, with their audit rows, in one SQLite transaction
4. On a stream version conflict, go back to 1 (tenacity)
5. Catch the read models up and publish the committed events

Example:
    >>> from fund_ledger import FundLedger
    >>> from fund_ledger.kernel.authz import Actor, Role
    >>> ledger = FundLedger("ledger.db")
    >>> admin = Actor(actor_id="alice", role=Role.ADMIN)
    >>> owner = Actor(actor_id="bob")
    >>> ledger.adjust_pool(admin, "500000", note="Opening balance")
    >>> budget = ledger.create_budget(owner, title="Library books", requested_amount="100000")
    >>> ledger.approve_budget(admin, budget.budget_id, allocated_amount="80000")
    >>> ledger.disburse(admin, budget.budget_id, "80000")
    >>> ledger.tick()  # Reconcile stale settlements, check invariants
"""

import threading
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Sequence

from fund_ledger.budget.aggregate import load_budget
from fund_ledger.budget.commands import (
    AddBudgetItem,
    ApproveBudget,
    BudgetItemSpec,
    CorrectBudgetItem,
    CreateBudget,
    DeleteBudget,
    RejectBudget,
    RequestRevision,
    ReviseBudget,
    SubmitBudget,
)
from fund_ledger.budget.handlers import BudgetCommandHandlers
from fund_ledger.budget.models import (
    Budget,
    BudgetStatus,
    DisbursementMethod,
    DisbursementType,
    Expenditure,
    Priority,
    SupplementaryBudget,
    SupplementaryStatus,
    Transaction,
    TransactionStatus,
)
from fund_ledger.budget.projections import BudgetRegistry, LedgerHealthProjection
from fund_ledger.disbursement.channel import DeferredChannel, DisbursementChannel, ManualChannel
from fund_ledger.disbursement.commands import Disburse, Rebatch, RevokeBudget, SettleDisbursement
from fund_ledger.disbursement.handlers import DisbursementCommandHandlers
from fund_ledger.expenditure.commands import ExpenditureLine, PostExpenditure, VoidExpenditure
from fund_ledger.expenditure.handlers import ExpenditureCommandHandlers
from fund_ledger.kernel.audit import AuditEntry, audit_entries_for
from fund_ledger.kernel.authz import Actor, Capability, authorize
from fund_ledger.kernel.bus import InProcessBus
from fund_ledger.kernel.errors import (
    ExpenditureNotFound,
    ExternalChannelFailure,
    SupplementaryNotFound,
    TransactionNotFound,
)
from fund_ledger.kernel.event_store import SQLiteEventStore
from fund_ledger.kernel.events import Event
from fund_ledger.kernel.ids import disbursement_reference, generate_id, settlement_command_id
from fund_ledger.kernel.logging import LogOperation, correlation_scope, get_logger
from fund_ledger.kernel.metrics import (
    disbursements_total,
    settlement_replays_ignored_total,
    track_command_duration,
    update_ledger_gauges,
)
from fund_ledger.kernel.policy import LedgerPolicy
from fund_ledger.kernel.retry import retry_on_version_conflict
from fund_ledger.kernel.tick import TickEngine, TickResult
from fund_ledger.kernel.time import RealTimeProvider, TimeProvider
from fund_ledger.notifications.dispatcher import LoggingDispatcher, NotificationDispatcher
from fund_ledger.notifications.router import NotificationRouter
from fund_ledger.pool.commands import (
    AdjustPool,
    RejectRemittance,
    SubmitRemittance,
    VerifyRemittance,
)
from fund_ledger.pool.handlers import PoolCommandHandlers
from fund_ledger.pool.models import (
    POOL_STREAM_ID,
    POOL_STREAM_TYPE,
    REMITTANCE_STREAM_TYPE,
    FundPool,
    PoolMovement,
    Remittance,
    RemittanceStatus,
)
from fund_ledger.pool.projections import (
    apply_pool_event,
    replay_pool,
    replay_remittance,
    replay_remittances,
)
from fund_ledger.supplementary.commands import DecideSupplementary, RequestSupplementary
from fund_ledger.supplementary.handlers import SupplementaryCommandHandlers

logger = get_logger(__name__)

# Channel failures that leave a PENDING disbursement to be marked FAILED
CHANNEL_ERRORS = (ExternalChannelFailure, TimeoutError, ConnectionError)


def default_channels() -> dict[DisbursementMethod, DisbursementChannel]:
    """Manual (synchronous) rails everywhere except mobile money"""
    manual = ManualChannel()
    return {
        DisbursementMethod.BANK_TRANSFER: manual,
        DisbursementMethod.CASH: manual,
        DisbursementMethod.CHEQUE: manual,
        DisbursementMethod.MOBILE_MONEY: DeferredChannel("mobile_money"),
        DisbursementMethod.OTHER: manual,
    }


class FundLedger:
    """
    Fund ledger main façade

    Provides a unified API for all ledger operations including:
    - Budget request, review and approval
    - Disbursement, settlement, revocation and rebatching
    - Supplementary budgets and expenditure posting
    - Fund pool adjustment and remittance verification
    - Reconciliation tick and ledger health
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        policy: LedgerPolicy | None = None,
        time_provider: TimeProvider | None = None,
        channels: dict[DisbursementMethod, DisbursementChannel] | None = None,
        dispatcher: NotificationDispatcher | None = None,
        admin_ids: Sequence[str] = (),
        id_factory: Callable[[], str] = generate_id,
        reference_factory: Callable[[], str] = disbursement_reference,
    ) -> None:
        """
        Initialize the ledger

        Args:
            sqlite_path: Path to SQLite database
            policy: Ledger policy (uses defaults if None)
            time_provider: Time provider (uses real time if None)
            channels: Payment channel per disbursement method
            dispatcher: Notification transport (logs notifications if None)
            admin_ids: Users who receive admin notifications
            id_factory: Generator for event and entity ids
            reference_factory: Generator for disbursement references
        """
        self.sqlite_path = Path(sqlite_path)
        self.policy = policy or LedgerPolicy()
        self.time_provider = time_provider or RealTimeProvider()
        self.id_factory = id_factory
        self.channels = default_channels()
        if channels:
            self.channels.update(channels)

        # Initialize infrastructure
        self.event_store = SQLiteEventStore(str(self.sqlite_path))
        self.budget_handlers = BudgetCommandHandlers(self.time_provider, self.policy, id_factory)
        self.disbursement_handlers = DisbursementCommandHandlers(
            self.time_provider, self.policy, id_factory
        )
        self.reference_factory = reference_factory
        self.supplementary_handlers = SupplementaryCommandHandlers(
            self.time_provider, self.policy, id_factory
        )
        self.expenditure_handlers = ExpenditureCommandHandlers(
            self.time_provider, self.policy, id_factory
        )
        self.pool_handlers = PoolCommandHandlers(self.time_provider, self.policy, id_factory)
        self.tick_engine = TickEngine(self.event_store, self.time_provider, self.policy, id_factory)

        # Initialize projections
        self.budget_registry = BudgetRegistry()
        self.ledger_health = LedgerHealthProjection()
        self.pool = FundPool()
        self._projection_lock = threading.RLock()

        # Notifications hang off the bus; they only ever see committed events
        self.bus = InProcessBus()
        self.router = NotificationRouter(
            dispatcher or LoggingDispatcher(),
            owner_lookup=self.budget_registry.owner_of,
            admin_ids=admin_ids,
        )
        self.router.register(self.bus)

        # Rebuild projections from event store
        self._catch_up()

    def _catch_up(self) -> None:
        """Apply every event committed since the read models last looked"""
        with self._projection_lock:
            events = self.event_store.load_all_events(after_position=self.budget_registry.position)
            for event in events:
                self.budget_registry.apply_event(event)
                self.ledger_health.apply_event(event)
                if event.stream_type == POOL_STREAM_TYPE:
                    self.pool = apply_pool_event(self.pool, event)

    def _load_budget(self, budget_id: str) -> Budget:
        return load_budget(self.event_store.load_stream(budget_id), budget_id)

    def _load_pool(self) -> FundPool:
        return replay_pool(self.event_store.load_stream(POOL_STREAM_ID))

    def _commit(self, command_id: str, build: Callable[[], list[Event]]) -> tuple[list[Event], bool]:
        """
        Run one unit of work

        Args:
            command_id: Idempotency key shared by every event of the command
            build: Reloads state and returns the events to append

        Returns:
            (events, replayed) - replayed is True when command_id had
            already committed and its stored events are returned instead
        """

        @retry_on_version_conflict(self.policy.max_conflict_retries)
        def attempt() -> tuple[list[Event], bool]:
            existing = self.event_store.get_events_by_command_id(command_id)
            if existing:
                return existing, True
            events = build()
            if not events:
                return [], False
            committed = self.event_store.append_many(events, audit_entries_for(events))
            return committed, committed[0].event_id != events[0].event_id

        committed, replayed = attempt()
        if replayed:
            logger.info("Command already committed, returning stored events", command_id=command_id)
        elif committed:
            self._publish(committed)
        return committed, replayed

    def _publish(self, events: list[Event]) -> None:
        self._catch_up()
        self.bus.publish_events(events)
        with self._projection_lock:
            update_ledger_gauges(
                self.pool.balance, len(self.budget_registry.pending_settlements())
            )

    def _channel_for(self, method: DisbursementMethod) -> DisbursementChannel:
        return self.channels[method]

    def _channel_named(self, name: str | None) -> DisbursementChannel | None:
        for channel in self.channels.values():
            if channel.name == name:
                return channel
        return None

    # Fund pool operations

    @track_command_duration("adjust_pool")
    def adjust_pool(
        self,
        actor: Actor,
        delta: Decimal | str | int,
        note: str,
        command_id: str | None = None,
    ) -> FundPool:
        """
        Deposit into (positive delta) or withdraw from (negative delta) the pool

        Returns:
            Pool state after the adjustment

        Raises:
            NotAuthorized: If actor is not an admin
            InsufficientBalance: If the balance would go negative
        """
        command = AdjustPool(delta=delta, note=note)
        command_id = command_id or generate_id()
        with LogOperation(logger, "adjust_pool", actor_id=actor.actor_id):
            self._commit(
                command_id,
                lambda: self.pool_handlers.handle_adjust_pool(
                    command, command_id, actor, self._load_pool()
                ),
            )
        return self.pool_balance()

    def pool_balance(self) -> FundPool:
        """Current pool state, read fresh from its stream"""
        return self._load_pool()

    def pool_history(self) -> list[PoolMovement]:
        """Every pool movement, oldest first"""
        return list(self._load_pool().movements)

    # Remittance operations

    def _load_remittance(self, remittance_id: str) -> Remittance:
        return replay_remittance(self.event_store.load_stream(remittance_id), remittance_id)

    @track_command_duration("submit_remittance")
    def submit_remittance(
        self,
        actor: Actor,
        amount: Decimal | str | int,
        note: str = "",
        proof: str = "",
        command_id: str | None = None,
    ) -> Remittance:
        """
        Report money sent in to the pool; it waits PENDING for an admin

        Raises:
            InvalidAmount: If amount is malformed or <= 0
        """
        command = SubmitRemittance(amount=amount, note=note, proof=proof)
        command_id = command_id or generate_id()
        with LogOperation(logger, "submit_remittance", actor_id=actor.actor_id):
            events, _ = self._commit(
                command_id,
                lambda: self.pool_handlers.handle_submit_remittance(command, command_id, actor),
            )
        return self._load_remittance(events[0].stream_id)

    @track_command_duration("verify_remittance")
    def verify_remittance(self, actor: Actor, remittance_id: str, note: str = "") -> Remittance:
        """
        Confirm a PENDING remittance and credit its amount to the pool

        Raises:
            RemittanceNotFound: If no such remittance exists
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the remittance was already decided
        """
        command = VerifyRemittance(remittance_id=remittance_id, note=note)
        command_id = generate_id()
        with LogOperation(
            logger, "verify_remittance", remittance_id=remittance_id, actor_id=actor.actor_id
        ):
            self._commit(
                command_id,
                lambda: self.pool_handlers.handle_verify_remittance(
                    command,
                    command_id,
                    actor,
                    self._load_remittance(remittance_id),
                    self._load_pool(),
                ),
            )
        return self._load_remittance(remittance_id)

    @track_command_duration("reject_remittance")
    def reject_remittance(self, actor: Actor, remittance_id: str, note: str = "") -> Remittance:
        """
        Turn a PENDING remittance down; the pool is untouched

        Raises:
            RemittanceNotFound: If no such remittance exists
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the remittance was already decided
        """
        command = RejectRemittance(remittance_id=remittance_id, note=note)
        command_id = generate_id()
        with LogOperation(
            logger, "reject_remittance", remittance_id=remittance_id, actor_id=actor.actor_id
        ):
            self._commit(
                command_id,
                lambda: self.pool_handlers.handle_reject_remittance(
                    command, command_id, actor, self._load_remittance(remittance_id)
                ),
            )
        return self._load_remittance(remittance_id)

    def get_remittance(self, remittance_id: str) -> Remittance:
        return self._load_remittance(remittance_id)

    def list_remittances(
        self, actor: Actor, status: RemittanceStatus | str | None = None
    ) -> list[Remittance]:
        """
        Remittances visible to actor, newest first

        Admins see every remittance; anyone else sees only their own.
        """
        events = self.event_store.query_events(stream_type=REMITTANCE_STREAM_TYPE)
        remittances = replay_remittances(events)
        if not actor.is_admin:
            remittances = [r for r in remittances if r.submitted_by == actor.actor_id]
        if status is not None:
            remittances = [r for r in remittances if r.status == RemittanceStatus(status)]
        return sorted(remittances, key=lambda r: r.submitted_at, reverse=True)

    # Budget operations

    @track_command_duration("create_budget")
    def create_budget(
        self,
        actor: Actor,
        title: str,
        description: str = "",
        requested_amount: Decimal | str | int | None = None,
        priority: Priority = Priority.NORMAL,
        disbursement_type: DisbursementType = DisbursementType.FULL,
        batch_count: int | None = None,
        items: list[dict[str, Any]] | None = None,
        submit: bool = True,
        command_id: str | None = None,
    ) -> Budget:
        """
        Create a budget request

        Args:
            actor: Owner of the new budget
            title: Budget title
            description: Free-text description
            requested_amount: Amount asked for (defaults to the item total)
            priority: Review priority
            disbursement_type: FULL or BATCHES (the admin may override)
            batch_count: Suggested number of batches
            items: Line items [{name, unit_price, quantity}, ...]
            submit: False keeps the budget in DRAFT
            command_id: Idempotency key (generated if None)

        Returns:
            The new budget

        Raises:
            PendingBudgetLimitReached: If the owner already has too many PENDING budgets
            InvalidInput: If neither a requested amount nor items are given
        """
        command = CreateBudget(
            title=title,
            description=description,
            requested_amount=requested_amount,
            priority=priority,
            disbursement_type=disbursement_type,
            batch_count=batch_count,
            items=[BudgetItemSpec(**item) for item in items or []],
            submit=submit,
        )
        command_id = command_id or generate_id()

        def build() -> list[Event]:
            self._catch_up()
            with self._projection_lock:
                pending = self.budget_registry.count_pending(actor.actor_id)
            return self.budget_handlers.handle_create_budget(command, command_id, actor, pending)

        with LogOperation(logger, "create_budget", actor_id=actor.actor_id):
            events, _ = self._commit(command_id, build)
        return self._load_budget(events[0].stream_id)

    @track_command_duration("submit_budget")
    def submit_budget(self, actor: Actor, budget_id: str) -> Budget:
        """
        Send a DRAFT budget for review (DRAFT → PENDING)

        Raises:
            NotOwner: If actor doesn't own the budget
            InvalidTransition: If the budget isn't DRAFT
            PendingBudgetLimitReached: If the owner has too many PENDING budgets
        """
        command = SubmitBudget(budget_id=budget_id)
        command_id = generate_id()

        def build() -> list[Event]:
            budget = self._load_budget(budget_id)
            self._catch_up()
            with self._projection_lock:
                pending = self.budget_registry.count_pending(budget.owner_id)
            return self.budget_handlers.handle_submit_budget(
                command, command_id, actor, budget, pending
            )

        with LogOperation(logger, "submit_budget", budget_id=budget_id):
            self._commit(command_id, build)
        return self._load_budget(budget_id)

    @track_command_duration("add_budget_item")
    def add_budget_item(
        self,
        actor: Actor,
        budget_id: str,
        name: str,
        unit_price: Decimal | str | int,
        quantity: int = 1,
    ) -> Budget:
        """Add a line item while the budget is DRAFT or PENDING"""
        command = AddBudgetItem(
            budget_id=budget_id,
            item=BudgetItemSpec(name=name, unit_price=unit_price, quantity=quantity),
        )
        command_id = generate_id()
        self._commit(
            command_id,
            lambda: self.budget_handlers.handle_add_budget_item(
                command, command_id, actor, self._load_budget(budget_id)
            ),
        )
        return self._load_budget(budget_id)

    @track_command_duration("correct_budget_item")
    def correct_budget_item(
        self,
        actor: Actor,
        budget_id: str,
        item_id: str,
        reason: str,
        name: str | None = None,
        unit_price: Decimal | str | int | None = None,
        quantity: int | None = None,
    ) -> Budget:
        """
        Change a line item

        Raises:
            BudgetItemNotFound: If the budget has no such item
            BudgetItemLocked: If an owner edits an item already spent against
        """
        command = CorrectBudgetItem(
            budget_id=budget_id,
            item_id=item_id,
            name=name,
            unit_price=unit_price,
            quantity=quantity,
            reason=reason,
        )
        command_id = generate_id()
        with LogOperation(logger, "correct_budget_item", budget_id=budget_id, item_id=item_id):
            self._commit(
                command_id,
                lambda: self.budget_handlers.handle_correct_budget_item(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        return self._load_budget(budget_id)

    @track_command_duration("request_revision")
    def request_revision(self, actor: Actor, budget_id: str, reason: str) -> Budget:
        """Ask the owner to revise a PENDING budget (status stays PENDING)"""
        command = RequestRevision(budget_id=budget_id, reason=reason)
        command_id = generate_id()
        with LogOperation(logger, "request_revision", budget_id=budget_id):
            self._commit(
                command_id,
                lambda: self.budget_handlers.handle_request_revision(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        return self._load_budget(budget_id)

    @track_command_duration("revise_budget")
    def revise_budget(
        self,
        actor: Actor,
        budget_id: str,
        title: str | None = None,
        description: str | None = None,
        requested_amount: Decimal | str | int | None = None,
        priority: Priority | None = None,
    ) -> Budget:
        """
        Answer a revision request; open revisions are resolved

        Raises:
            InvalidInput: If nothing would change
        """
        command = ReviseBudget(
            budget_id=budget_id,
            title=title,
            description=description,
            requested_amount=requested_amount,
            priority=priority,
        )
        command_id = generate_id()
        with LogOperation(logger, "revise_budget", budget_id=budget_id):
            self._commit(
                command_id,
                lambda: self.budget_handlers.handle_revise_budget(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        return self._load_budget(budget_id)

    @track_command_duration("approve_budget")
    def approve_budget(
        self,
        actor: Actor,
        budget_id: str,
        allocated_amount: Decimal | str | int | None = None,
        disbursement_type: DisbursementType | None = None,
        batch_count: int | None = None,
        batch_amounts: list[Decimal | str | int] | None = None,
        command_id: str | None = None,
    ) -> Budget:
        """
        Approve a PENDING budget; the pool is debited in the same commit

        Args:
            actor: Approving admin
            budget_id: Budget ID
            allocated_amount: Allocation (defaults to the requested amount)
            disbursement_type: Override the requested disbursement type
            batch_count: Split the allocation into this many batches
            batch_amounts: Explicit batch amounts (must sum to the allocation)
            command_id: Idempotency key (generated if None)

        Returns:
            The approved budget

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the budget isn't PENDING
            InsufficientPool: If the pool can't cover the allocation
            BatchAmountMismatch: If batch amounts don't sum to the allocation
        """
        command = ApproveBudget(
            budget_id=budget_id,
            allocated_amount=allocated_amount,
            disbursement_type=disbursement_type,
            batch_count=batch_count,
            batch_amounts=batch_amounts,
        )
        command_id = command_id or generate_id()
        with LogOperation(logger, "approve_budget", budget_id=budget_id, actor_id=actor.actor_id):
            self._commit(
                command_id,
                lambda: self.budget_handlers.handle_approve_budget(
                    command, command_id, actor, self._load_budget(budget_id), self._load_pool()
                ),
            )
        return self._load_budget(budget_id)

    @track_command_duration("reject_budget")
    def reject_budget(self, actor: Actor, budget_id: str, reason: str = "") -> Budget:
        """Turn a PENDING budget down (terminal)"""
        command = RejectBudget(budget_id=budget_id, reason=reason)
        command_id = generate_id()
        with LogOperation(logger, "reject_budget", budget_id=budget_id):
            self._commit(
                command_id,
                lambda: self.budget_handlers.handle_reject_budget(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        return self._load_budget(budget_id)

    @track_command_duration("delete_budget")
    def delete_budget(self, actor: Actor, budget_id: str) -> None:
        """
        Discard a DRAFT budget

        Raises:
            BudgetHasDependents: If the budget already has ledger records
        """
        command = DeleteBudget(budget_id=budget_id)
        command_id = generate_id()
        with LogOperation(logger, "delete_budget", budget_id=budget_id):
            self._commit(
                command_id,
                lambda: self.budget_handlers.handle_delete_budget(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )

    def get_budget(self, budget_id: str, actor: Actor | None = None) -> Budget:
        """
        Get a budget, folded fresh from its stream

        Args:
            budget_id: Budget ID
            actor: When given, must be an admin or the owner

        Raises:
            BudgetNotFound: If the budget doesn't exist (or was deleted)
        """
        budget = self._load_budget(budget_id)
        if actor is not None:
            authorize(actor, Capability.VIEW_BUDGET, budget)
        return budget

    def list_budgets(
        self, owner_id: str | None = None, status: BudgetStatus | None = None
    ) -> list[Budget]:
        """List budgets, newest first, optionally by owner and status"""
        self._catch_up()
        with self._projection_lock:
            return self.budget_registry.list_budgets(owner_id=owner_id, status=status)

    def admin_queue(self) -> list[Budget]:
        """PENDING budgets by priority, then longest-waiting first"""
        self._catch_up()
        with self._projection_lock:
            return self.budget_registry.admin_queue()

    # Disbursement operations

    @track_command_duration("disburse")
    def disburse(
        self,
        actor: Actor,
        budget_id: str,
        amount: Decimal | str | int,
        method: DisbursementMethod = DisbursementMethod.BANK_TRANSFER,
        destination: str | None = None,
        command_id: str | None = None,
    ) -> Transaction:
        """
        Pay out part of a budget's allocation

        Synchronous channels complete immediately. Asynchronous channels
        leave the transaction PENDING (reserving its headroom) until the
        channel calls settle() or the tick reconciles it.

        Returns:
            The disbursement transaction

        Raises:
            NotAuthorized: If actor is not an admin
            InvalidTransition: If the budget can't be disbursed from
            InvalidAmount: If amount <= 0 (or misses the next batch)
            InsufficientAllocation: If amount exceeds the headroom
            ExternalChannelFailure: If the channel refused the payment
        """
        command = Disburse(
            budget_id=budget_id, amount=amount, method=method, destination=destination
        )
        command_id = command_id or generate_id()
        channel = self._channel_for(command.method)

        with LogOperation(
            logger, "disburse", budget_id=budget_id, method=command.method.value
        ):
            reference = self.reference_factory()
            channel_ref = None
            if channel.synchronous:
                # Asked once, outside the retried build
                channel_ref = channel.initiate(command.amount, command.destination, reference)
            events, replayed = self._commit(
                command_id,
                lambda: self.disbursement_handlers.handle_disburse(
                    command,
                    command_id,
                    actor,
                    self._load_budget(budget_id),
                    channel,
                    reference,
                    channel_ref,
                ),
            )
            payload = events[0].payload
            transaction_id = payload["transaction_id"]

            if not replayed:
                status = TransactionStatus(payload["status"])
                if status == TransactionStatus.PENDING:
                    self._dispatch(actor, budget_id, transaction_id, command, channel, payload)
                disbursements_total.labels(
                    method=command.method.value, outcome=status.value.lower()
                ).inc()

        return self._load_budget(budget_id).find_transaction(transaction_id)

    def _dispatch(
        self,
        actor: Actor,
        budget_id: str,
        transaction_id: str,
        command: Disburse,
        channel: DisbursementChannel,
        payload: dict[str, Any],
    ) -> None:
        """Hand a committed PENDING disbursement to its channel"""
        try:
            channel_ref = channel.initiate(command.amount, command.destination, payload["reference"])
        except CHANNEL_ERRORS as e:
            reason = e.reason if isinstance(e, ExternalChannelFailure) else str(e) or type(e).__name__
            fail_id = f"fail:{transaction_id}"
            self._commit(
                fail_id,
                lambda: self.disbursement_handlers.handle_channel_failure(
                    self._load_budget(budget_id), transaction_id, reason, fail_id, actor
                ),
            )
            disbursements_total.labels(method=command.method.value, outcome="failed").inc()
            logger.warning(
                "Disbursement channel refused payment",
                budget_id=budget_id,
                transaction_id=transaction_id,
                channel=channel.name,
                reason=reason,
            )
            raise ExternalChannelFailure(channel.name, reason, transaction_id) from e

        dispatch_id = f"dispatch:{transaction_id}"
        self._commit(
            dispatch_id,
            lambda: self.disbursement_handlers.handle_dispatched(
                self._load_budget(budget_id), transaction_id, channel_ref, dispatch_id, actor
            ),
        )

    def _budget_for_reference(self, channel_ref: str) -> str:
        for event_type, key in (
            ("DisbursementDispatched", "channel_ref"),
            ("DisbursementInitiated", "channel_ref"),
            ("DisbursementInitiated", "reference"),
        ):
            found = self.event_store.find_by_payload(event_type, key, channel_ref)
            if found:
                return found[0].stream_id
        raise TransactionNotFound(channel_ref)

    @track_command_duration("settle")
    def settle(
        self,
        channel_ref: str,
        outcome: TransactionStatus | str,
        reason: str | None = None,
        actor: Actor | None = None,
    ) -> list[Event]:
        """
        Payment channel callback for a PENDING disbursement

        Safe to call any number of times: the command id is derived from
        the channel reference, so only the first delivery changes the
        ledger.

        Args:
            channel_ref: Channel reference (or our own disbursement reference)
            outcome: COMPLETED/SUCCESS or FAILED
            reason: Failure reason reported by the channel
            actor: Defaults to the SYSTEM actor

        Returns:
            The settlement events committed by this call ([] for a replay)

        Raises:
            TransactionNotFound: If no disbursement carries channel_ref
        """
        actor = actor or Actor.system()
        command = SettleDisbursement(channel_ref=channel_ref, outcome=outcome, reason=reason)
        command_id = settlement_command_id(command.channel_ref)

        with correlation_scope(command_id, channel_ref=channel_ref), LogOperation(
            logger, "settle", outcome=command.outcome.value
        ):
            budget_id = self._budget_for_reference(command.channel_ref)
            events, replayed = self._commit(
                command_id,
                lambda: self.disbursement_handlers.handle_settle(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        if replayed or not events:
            settlement_replays_ignored_total.inc()
            return []
        transaction = self._load_budget(budget_id).find_by_reference(command.channel_ref)
        method = transaction.method.value if transaction and transaction.method else "unknown"
        disbursements_total.labels(method=method, outcome=command.outcome.value.lower()).inc()
        return events

    @track_command_duration("revoke_budget")
    def revoke_budget(
        self, actor: Actor, budget_id: str, reason: str = "", command_id: str | None = None
    ) -> Budget:
        """
        Withdraw an APPROVED or PARTIALLY_DISBURSED budget (terminal)

        Completed disbursements are reversed, pending ones cancelled, and
        the allocation returns to the pool in the same commit.
        """
        command = RevokeBudget(budget_id=budget_id, reason=reason)
        command_id = command_id or generate_id()
        with LogOperation(logger, "revoke_budget", budget_id=budget_id, actor_id=actor.actor_id):
            self._commit(
                command_id,
                lambda: self.disbursement_handlers.handle_revoke(
                    command, command_id, actor, self._load_budget(budget_id), self._load_pool()
                ),
            )
        return self._load_budget(budget_id)

    @track_command_duration("rebatch")
    def rebatch(
        self,
        actor: Actor,
        budget_id: str,
        amounts: list[Decimal | str | int],
        reason: str,
    ) -> Budget:
        """
        Replace a budget's PENDING batches

        Raises:
            BatchAmountMismatch: If amounts don't sum to the undisbursed allocation
        """
        command = Rebatch(budget_id=budget_id, amounts=amounts, reason=reason)
        command_id = generate_id()
        with LogOperation(logger, "rebatch", budget_id=budget_id, batches=len(command.amounts)):
            self._commit(
                command_id,
                lambda: self.disbursement_handlers.handle_rebatch(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        return self._load_budget(budget_id)

    def list_transactions(self, budget_id: str) -> list[Transaction]:
        """Ledger rows of a budget in commit order"""
        return list(self._load_budget(budget_id).transactions)

    # Supplementary operations

    @track_command_duration("request_supplementary")
    def request_supplementary(
        self,
        actor: Actor,
        budget_id: str,
        amount: Decimal | str | int,
        reason: str,
    ) -> SupplementaryBudget:
        """
        Ask for more money on a funded budget (owner only)

        Returns:
            The PENDING supplementary request
        """
        command = RequestSupplementary(budget_id=budget_id, amount=amount, reason=reason)
        command_id = generate_id()
        with LogOperation(logger, "request_supplementary", budget_id=budget_id):
            events, _ = self._commit(
                command_id,
                lambda: self.supplementary_handlers.handle_request_supplementary(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        supplementary_id = events[0].payload["supplementary_id"]
        return self._load_budget(budget_id).supplementaries[supplementary_id]

    @track_command_duration("decide_supplementary")
    def decide_supplementary(
        self,
        actor: Actor,
        supplementary_id: str,
        decision: SupplementaryStatus | str,
        note: str = "",
    ) -> SupplementaryBudget:
        """
        Approve or reject a PENDING supplementary request (admin only)

        Approval raises the budget's effective allocation and debits the
        pool in one commit.

        Raises:
            SupplementaryNotFound: If no budget holds the request
            InvalidTransition: If the request was already decided
            InsufficientPool: If the pool can't cover an approval
        """
        command = DecideSupplementary(
            supplementary_id=supplementary_id, decision=decision, note=note
        )
        self._catch_up()
        with self._projection_lock:
            budget_id = self.budget_registry.budget_for_supplementary(supplementary_id)
        if budget_id is None:
            raise SupplementaryNotFound(supplementary_id)

        command_id = generate_id()
        with LogOperation(
            logger,
            "decide_supplementary",
            supplementary_id=supplementary_id,
            decision=command.decision.value,
        ):
            self._commit(
                command_id,
                lambda: self.supplementary_handlers.handle_decide_supplementary(
                    command, command_id, actor, self._load_budget(budget_id), self._load_pool()
                ),
            )
        return self._load_budget(budget_id).supplementaries[supplementary_id]

    def list_pending_supplementaries(self) -> list[tuple[str, SupplementaryBudget]]:
        """(budget_id, request) pairs awaiting a decision, oldest first"""
        self._catch_up()
        with self._projection_lock:
            return self.budget_registry.list_pending_supplementaries()

    # Expenditure operations

    @track_command_duration("post_expenditure")
    def post_expenditure(
        self,
        actor: Actor,
        budget_id: str,
        title: str,
        items: list[dict[str, Any]],
        description: str = "",
        priority: Priority = Priority.NORMAL,
        request_supplementary: bool = False,
        supplementary_reason: str | None = None,
    ) -> Expenditure:
        """
        Record spend against a funded budget (owner only)

        Args:
            actor: Budget owner
            budget_id: Budget ID
            title: Expenditure title
            items: Lines [{budget_item_id, spent_amount}, ...]
            description: Free-text description
            priority: Informational priority
            request_supplementary: Cover an overrun with a supplementary request
            supplementary_reason: Reason for that request

        Returns:
            The recorded expenditure

        Raises:
            InsufficientAllocation: If the budget overruns and no supplementary was requested
        """
        command = PostExpenditure(
            budget_id=budget_id,
            title=title,
            description=description,
            priority=priority,
            items=[ExpenditureLine(**item) for item in items],
            request_supplementary=request_supplementary,
            supplementary_reason=supplementary_reason,
        )
        command_id = generate_id()
        with LogOperation(logger, "post_expenditure", budget_id=budget_id, lines=len(items)):
            events, _ = self._commit(
                command_id,
                lambda: self.expenditure_handlers.handle_post_expenditure(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        expenditure_id = events[0].payload["expenditure_id"]
        return self._load_budget(budget_id).expenditures[expenditure_id]

    @track_command_duration("void_expenditure")
    def void_expenditure(self, actor: Actor, expenditure_id: str, reason: str) -> Expenditure:
        """Mark an expenditure VOID; it leaves the spent total"""
        command = VoidExpenditure(expenditure_id=expenditure_id, reason=reason)
        self._catch_up()
        with self._projection_lock:
            budget_id = self.budget_registry.budget_for_expenditure(expenditure_id)
        if budget_id is None:
            raise ExpenditureNotFound(expenditure_id)

        command_id = generate_id()
        with LogOperation(logger, "void_expenditure", expenditure_id=expenditure_id):
            self._commit(
                command_id,
                lambda: self.expenditure_handlers.handle_void_expenditure(
                    command, command_id, actor, self._load_budget(budget_id)
                ),
            )
        return self._load_budget(budget_id).expenditures[expenditure_id]

    def list_expenditures(self, budget_id: str) -> list[Expenditure]:
        """Expenditures of a budget (VOID ones included), oldest first"""
        budget = self._load_budget(budget_id)
        return sorted(budget.expenditures.values(), key=lambda e: e.posted_at)

    # Audit operations

    def get_audit_trail(
        self,
        entity: str | None = None,
        entity_id: str | None = None,
        user_id: str | None = None,
        action: str | None = None,
        budget_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """
        Read the audit log, oldest first

        Args:
            entity: e.g. "Budget", "Transaction", "FundPool"
            entity_id: Id of that entity
            user_id: Acting user
            action: e.g. "BUDGET_APPROVE"
            budget_id: Every row recorded on one budget's stream
            limit: Maximum rows
        """
        return self.event_store.list_audit_entries(
            entity=entity,
            entity_id=entity_id,
            user_id=user_id,
            action=action,
            stream_id=budget_id,
            limit=limit,
        )

    # Monitoring operations

    @track_command_duration("tick")
    def tick(self) -> TickResult:
        """
        Run the reconciliation loop

        Stale PENDING disbursements are re-queried (or failed), then every
        budget is checked against its ledger invariants.

        Returns:
            TickResult with settlements and warnings
        """
        self._catch_up()
        result = self.tick_engine.tick(self.budget_registry, self._reconcile)
        if result.triggered_events:
            self._publish(result.triggered_events)
        return result

    def _reconcile(self, budget_id: str, transaction: Transaction) -> list[Event]:
        """Settle one stale PENDING disbursement from the channel's answer"""
        channel_ref = transaction.channel_ref or transaction.reference
        channel = self._channel_named(transaction.channel)
        outcome = None
        query = getattr(channel, "query", None)
        if query is not None and transaction.channel_ref:
            outcome = query(transaction.channel_ref)

        if outcome in (TransactionStatus.COMPLETED, TransactionStatus.FAILED):
            reason = None if outcome == TransactionStatus.COMPLETED else "channel_reported_failure"
        else:
            outcome, reason = TransactionStatus.FAILED, "settlement_timeout"

        logger.info(
            "Reconciling stale disbursement",
            budget_id=budget_id,
            transaction_id=transaction.transaction_id,
            outcome=outcome.value,
            reason=reason,
        )
        return self.settle(channel_ref, outcome, reason=reason)

    def warnings(self, budget_id: str | None = None) -> dict:
        """Drift and overspend warnings recorded by past ticks"""
        self._catch_up()
        with self._projection_lock:
            return self.ledger_health.get_warnings(budget_id)

    def health(self) -> dict[str, Any]:
        """
        Ledger health summary for ops endpoints and the CLI

        Returns:
            Dict with event/stream counts, pool balance, pending
            settlements and warning counts
        """
        self._catch_up()
        with self._projection_lock:
            warnings = self.ledger_health.get_warnings()
            pending = self.budget_registry.pending_settlements()
            return {
                "events": self.event_store.count_events(),
                "streams": self.event_store.count_streams(),
                "budgets": len(self.budget_registry.budgets),
                "pool_balance": str(self.pool.balance),
                "pending_settlements": len(pending),
                "drift_incidents": len(warnings["drift_incidents"]),
                "overspend_incidents": len(warnings["overspend_incidents"]),
            }
