"""
Custom exceptions for the fund ledger

Every rejected transition raises a specific error carrying the fields that
explain it, so a CLI or web layer can tell the user exactly why an action
was refused ("why can't I disburse this?").

Fun fact: Double-entry bookkeeping was first codified by Luca Pacioli in 1494.
Five centuries later, "the books must balance" is still the first invariant.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for all fund ledger errors"""

    pass


# Storage errors


class EventStoreError(LedgerError):
    """Base class for event store errors (fatal for the current request)"""

    pass


class CommandIdempotencyViolation(EventStoreError):
    """
    Raised when attempting to execute a command with duplicate command_id

    Callers normally never see this - the store returns the original events.
    """

    def __init__(self, command_id: str, message: str = "") -> None:
        self.command_id = command_id
        super().__init__(
            message or f"Command {command_id} already processed (idempotency preserved)"
        )


class StreamVersionConflict(EventStoreError):
    """
    Raised when stream version doesn't match expected (optimistic locking)

    Indicates concurrent modification of the same budget or of the fund
    pool - caller should reload and retry.
    """

    def __init__(
        self, stream_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stream {stream_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )


class AuditWriteError(EventStoreError):
    """Raised when the audit row cannot be written; the mutation is rolled back"""

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Audit record for {action} could not be written ({reason}) - "
            "mutation not committed"
        )


# Invariant errors


class InvariantViolation(LedgerError):
    """
    Raised when a ledger invariant would be violated

    Money must reconcile: disbursed <= allocated, pool >= 0, batches sum
    to the allocation, and so on.
    """

    pass


class InvalidTransition(InvariantViolation):
    """Raised when the entity's status does not permit the requested action"""

    def __init__(
        self,
        entity: str,
        entity_id: str,
        current_status: str,
        action: str,
        allowed: list[str] | None = None,
    ) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        self.allowed = allowed or []
        allowed_text = f" (allowed from: {', '.join(self.allowed)})" if self.allowed else ""
        super().__init__(
            f"Cannot {action} {entity} {entity_id} while it is {current_status}{allowed_text}"
        )


class InvalidInput(InvariantViolation):
    """Raised when a non-monetary field fails a policy rule (title, reason, ...)"""

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class InvalidAmount(InvariantViolation):
    """Raised when an amount is non-positive or otherwise malformed"""

    def __init__(self, amount: Decimal | str, reason: str) -> None:
        self.amount = str(amount)
        self.reason = reason
        super().__init__(f"Invalid amount {self.amount}: {reason}")


class BatchAmountMismatch(InvalidAmount):
    """Raised when a batched disbursement does not equal the next pending batch"""

    def __init__(self, budget_id: str, batch_id: str, amount: Decimal, expected: Decimal) -> None:
        self.budget_id = budget_id
        self.batch_id = batch_id
        self.expected = str(expected)
        super().__init__(
            amount,
            f"budget {budget_id} disburses in batches - amount must equal "
            f"next pending batch {batch_id} of {expected} exactly",
        )


class InsufficientAllocation(InvariantViolation):
    """Raised when a disbursement or expenditure exceeds available headroom"""

    def __init__(
        self, budget_id: str, requested: Decimal, available: Decimal, context: str
    ) -> None:
        self.budget_id = budget_id
        self.requested = str(requested)
        self.available = str(available)
        self.context = context
        super().__init__(
            f"Budget {budget_id}: {context} of {requested} exceeds available "
            f"{available}"
        )


class InsufficientPool(InvariantViolation):
    """Raised when an allocation would drive the fund pool negative"""

    def __init__(self, requested: Decimal, balance: Decimal) -> None:
        self.requested = str(requested)
        self.balance = str(balance)
        super().__init__(
            f"Fund pool balance {balance} cannot cover allocation of {requested}"
        )


class InsufficientBalance(InvariantViolation):
    """Raised when a pool withdrawal would leave a negative balance"""

    def __init__(self, delta: Decimal, balance: Decimal) -> None:
        self.delta = str(delta)
        self.balance = str(balance)
        super().__init__(
            f"Fund pool adjustment {delta} would leave a negative balance "
            f"(current balance {balance})"
        )


class PendingBudgetLimitReached(InvariantViolation):
    """Raised when an owner already holds the maximum number of PENDING budgets"""

    def __init__(self, owner_id: str, limit: int) -> None:
        self.owner_id = owner_id
        self.limit = limit
        super().__init__(f"{owner_id} has reached the limit of {limit} pending budgets")


class BudgetHasDependents(InvariantViolation):
    """Raised when deleting a budget that already has ledger records attached"""

    def __init__(self, budget_id: str, dependents: list[str]) -> None:
        self.budget_id = budget_id
        self.dependents = dependents
        super().__init__(
            f"Budget {budget_id} cannot be deleted - it has {', '.join(dependents)}"
        )


class BudgetItemLocked(InvariantViolation):
    """Raised when an owner edits a budget item already referenced by spend"""

    def __init__(self, budget_id: str, item_id: str) -> None:
        self.budget_id = budget_id
        self.item_id = item_id
        super().__init__(
            f"Item {item_id} of budget {budget_id} is referenced by an expenditure "
            "and can only be corrected by an admin"
        )


# Authorization errors


class AuthorizationError(LedgerError):
    """Base class for actor rights failures"""

    pass


class NotAuthorized(AuthorizationError):
    """Raised when the actor's role lacks the capability"""

    def __init__(self, actor_id: str, role: str, capability: str) -> None:
        self.actor_id = actor_id
        self.role = role
        self.capability = capability
        super().__init__(f"{actor_id} ({role}) is not allowed to {capability}")


class NotOwner(AuthorizationError):
    """Raised when the actor does not own the budget"""

    def __init__(self, actor_id: str, budget_id: str, owner_id: str) -> None:
        self.actor_id = actor_id
        self.budget_id = budget_id
        self.owner_id = owner_id
        super().__init__(f"{actor_id} does not own budget {budget_id}")


# Lookup errors


class NotFound(LedgerError):
    """Base class for missing entities"""

    pass


class BudgetNotFound(NotFound):
    """Raised when budget does not exist"""

    def __init__(self, budget_id: str) -> None:
        self.budget_id = budget_id
        super().__init__(f"Budget {budget_id} not found")


class BudgetItemNotFound(NotFound):
    """Raised when a budget item does not belong to the budget"""

    def __init__(self, budget_id: str, item_id: str) -> None:
        self.budget_id = budget_id
        self.item_id = item_id
        super().__init__(f"Item {item_id} not found in budget {budget_id}")


class SupplementaryNotFound(NotFound):
    """Raised when a supplementary request does not exist"""

    def __init__(self, supplementary_id: str) -> None:
        self.supplementary_id = supplementary_id
        super().__init__(f"Supplementary budget {supplementary_id} not found")


class TransactionNotFound(NotFound):
    """Raised when a transaction or channel reference is unknown"""

    def __init__(self, reference: str) -> None:
        self.reference = reference
        super().__init__(f"Transaction {reference} not found")


class ExpenditureNotFound(NotFound):
    """Raised when an expenditure does not exist"""

    def __init__(self, expenditure_id: str) -> None:
        self.expenditure_id = expenditure_id
        super().__init__(f"Expenditure {expenditure_id} not found")


class RemittanceNotFound(NotFound):
    """Raised when a remittance does not exist"""

    def __init__(self, remittance_id: str) -> None:
        self.remittance_id = remittance_id
        super().__init__(f"Remittance {remittance_id} not found")


# External collaborators


class ExternalChannelFailure(LedgerError):
    """Raised when the disbursement channel rejects or times out"""

    def __init__(self, channel: str, reason: str, transaction_id: str | None = None) -> None:
        self.channel = channel
        self.reason = reason
        self.transaction_id = transaction_id
        super().__init__(f"Disbursement channel {channel} failed: {reason}")
