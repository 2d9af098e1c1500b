"""
Tests for disbursement, settlement, revocation and rebatching

Synchronous (manual) channels complete a disbursement in one commit;
mobile money goes through the deferred channel and settles later.
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from fund_ledger.budget.models import (
    BatchStatus,
    Budget,
    BudgetStatus,
    DisbursementMethod,
    DisbursementType,
    TransactionStatus,
    TransactionType,
)
from fund_ledger.kernel.authz import Actor
from fund_ledger.kernel.errors import (
    ExternalChannelFailure,
    InsufficientAllocation,
    InvalidAmount,
    InvalidTransition,
    NotAuthorized,
    TransactionNotFound,
)
from fund_ledger.ledger import FundLedger


class DecliningChannel:
    """Asynchronous channel that refuses every payment"""

    name = "declining"
    synchronous = False

    def initiate(self, amount, destination, reference) -> str:
        raise ExternalChannelFailure(self.name, "destination account closed")


class CountingChannel:
    """Synchronous channel that counts how often it is asked to pay"""

    name = "counting"
    synchronous = True

    def __init__(self) -> None:
        self.calls = 0

    def initiate(self, amount, destination, reference) -> str:
        self.calls += 1
        return reference


def replays_ignored() -> float:
    return REGISTRY.get_sample_value("fund_ledger_settlement_replays_ignored_total") or 0.0


@pytest.fixture
def batched_budget(funded_ledger: FundLedger, admin: Actor, owner: Actor) -> Budget:
    """80,000 approved in four batches of 20,000"""
    budget = funded_ledger.create_budget(
        owner,
        title="Classroom build",
        requested_amount="80000",
        disbursement_type=DisbursementType.BATCHES,
        batch_count=4,
    )
    return funded_ledger.approve_budget(admin, budget.budget_id)


def test_full_disbursement(funded_ledger: FundLedger, approved_budget: Budget, admin: Actor) -> None:
    """Requested 100,000, approved 80,000, disbursed 80,000 → DISBURSED"""
    transaction = funded_ledger.disburse(admin, approved_budget.budget_id, "80000")

    assert transaction.status == TransactionStatus.COMPLETED
    assert transaction.type == TransactionType.DISBURSEMENT
    assert transaction.reference.startswith("DISB-")

    budget = funded_ledger.get_budget(approved_budget.budget_id)
    assert budget.status == BudgetStatus.DISBURSED
    assert budget.disbursed_amount() == Decimal("80000.00")
    assert budget.headroom() == Decimal("0.00")
    assert funded_ledger.pool_balance().balance == Decimal("920000.00")


def test_partial_disbursement(funded_ledger: FundLedger, approved_budget: Budget, admin: Actor) -> None:
    funded_ledger.disburse(admin, approved_budget.budget_id, "30000")

    budget = funded_ledger.get_budget(approved_budget.budget_id)
    assert budget.status == BudgetStatus.PARTIALLY_DISBURSED
    assert budget.headroom() == Decimal("50000.00")


def test_disburse_beyond_headroom(funded_ledger: FundLedger, approved_budget: Budget, admin: Actor) -> None:
    funded_ledger.disburse(admin, approved_budget.budget_id, "50000")

    with pytest.raises(InsufficientAllocation):
        funded_ledger.disburse(admin, approved_budget.budget_id, "30000.01")

    assert funded_ledger.get_budget(approved_budget.budget_id).disbursed_amount() == Decimal(
        "50000.00"
    )


@pytest.mark.parametrize("amount", ["0", "-10"])
def test_disburse_non_positive(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, amount: str
) -> None:
    with pytest.raises(InvalidAmount):
        funded_ledger.disburse(admin, approved_budget.budget_id, amount)


@pytest.mark.parametrize("amount", ["abc", "100.005", "1e400"])
def test_disburse_malformed_amount(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, amount: str
) -> None:
    with pytest.raises(InvalidAmount):
        funded_ledger.disburse(admin, approved_budget.budget_id, amount)

    assert funded_ledger.list_transactions(approved_budget.budget_id) == []


def test_disburse_after_allocation_used_up(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    funded_ledger.disburse(admin, approved_budget.budget_id, "80000")
    assert funded_ledger.get_budget(approved_budget.budget_id).status == BudgetStatus.DISBURSED

    with pytest.raises(InsufficientAllocation):
        funded_ledger.disburse(admin, approved_budget.budget_id, "10000")


def test_disburse_needs_approval(funded_ledger: FundLedger, admin: Actor, owner: Actor) -> None:
    budget = funded_ledger.create_budget(owner, title="Library books", requested_amount="100")
    with pytest.raises(InvalidTransition):
        funded_ledger.disburse(admin, budget.budget_id, "100")


def test_owner_cannot_disburse(funded_ledger: FundLedger, approved_budget: Budget, owner: Actor) -> None:
    with pytest.raises(NotAuthorized):
        funded_ledger.disburse(owner, approved_budget.budget_id, "100")


def test_disburse_replay_pays_once(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    first = funded_ledger.disburse(admin, approved_budget.budget_id, "10000", command_id="pay-1")
    second = funded_ledger.disburse(admin, approved_budget.budget_id, "10000", command_id="pay-1")

    assert first.transaction_id == second.transaction_id
    assert len(funded_ledger.list_transactions(approved_budget.budget_id)) == 1


# Batches


def test_batch_amount_must_match(funded_ledger: FundLedger, batched_budget: Budget, admin: Actor) -> None:
    """Four batches of 20,000: paying 15,000 is refused, 20,000 goes through"""
    with pytest.raises(InvalidAmount):
        funded_ledger.disburse(admin, batched_budget.budget_id, "15000")

    funded_ledger.disburse(admin, batched_budget.budget_id, "20000")

    budget = funded_ledger.get_budget(batched_budget.budget_id)
    assert budget.status == BudgetStatus.PARTIALLY_DISBURSED
    assert [b.status for b in sorted(budget.batches, key=lambda b: b.sequence)] == [
        BatchStatus.DISBURSED,
        BatchStatus.PENDING,
        BatchStatus.PENDING,
        BatchStatus.PENDING,
    ]


def test_all_batches_disbursed(funded_ledger: FundLedger, batched_budget: Budget, admin: Actor) -> None:
    for _ in range(4):
        funded_ledger.disburse(admin, batched_budget.budget_id, "20000")

    budget = funded_ledger.get_budget(batched_budget.budget_id)
    assert budget.status == BudgetStatus.DISBURSED
    assert budget.next_pending_batch() is None


def test_in_flight_batch_blocks_the_next_one(
    funded_ledger: FundLedger, batched_budget: Budget, admin: Actor
) -> None:
    funded_ledger.disburse(
        admin, batched_budget.budget_id, "20000", method=DisbursementMethod.MOBILE_MONEY
    )

    with pytest.raises(InvalidTransition):
        funded_ledger.disburse(admin, batched_budget.budget_id, "20000")


def test_rebatch_remaining_allocation(
    funded_ledger: FundLedger, batched_budget: Budget, admin: Actor
) -> None:
    funded_ledger.disburse(admin, batched_budget.budget_id, "20000")

    budget = funded_ledger.rebatch(
        admin, batched_budget.budget_id, ["30000", "30000"], reason="Supplier asked for two drops"
    )

    pending = [b for b in budget.batches if b.status == BatchStatus.PENDING]
    assert [b.amount for b in pending] == [Decimal("30000.00"), Decimal("30000.00")]
    assert [b.sequence for b in pending] == [5, 6]
    assert len(budget.batches) == 3

    funded_ledger.disburse(admin, batched_budget.budget_id, "30000")


def test_rebatch_must_cover_undisbursed(
    funded_ledger: FundLedger, batched_budget: Budget, admin: Actor
) -> None:
    with pytest.raises(InvalidAmount):
        funded_ledger.rebatch(admin, batched_budget.budget_id, ["40000"], reason="Short split")


def test_rebatch_needs_batches(funded_ledger: FundLedger, approved_budget: Budget, admin: Actor) -> None:
    with pytest.raises(InvalidTransition):
        funded_ledger.rebatch(admin, approved_budget.budget_id, ["80000"], reason="Not batched")


# Asynchronous settlement


def test_mobile_money_settles_later(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    transaction = funded_ledger.disburse(
        admin,
        approved_budget.budget_id,
        "80000",
        method=DisbursementMethod.MOBILE_MONEY,
        destination="+254700000001",
    )

    assert transaction.status == TransactionStatus.PENDING
    assert transaction.channel_ref.startswith("mobile_money-")
    pending = funded_ledger.get_budget(approved_budget.budget_id)
    assert pending.status == BudgetStatus.APPROVED
    assert pending.headroom() == Decimal("0.00")

    events = funded_ledger.settle(transaction.channel_ref, "SUCCESS")

    assert [e.event_type for e in events] == ["DisbursementSettled"]
    settled = funded_ledger.get_budget(approved_budget.budget_id)
    assert settled.status == BudgetStatus.DISBURSED
    assert settled.find_transaction(transaction.transaction_id).status == TransactionStatus.COMPLETED


def test_settlement_replay_is_ignored(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    """The channel may call back any number of times; only the first counts"""
    transaction = funded_ledger.disburse(
        admin, approved_budget.budget_id, "80000", method=DisbursementMethod.MOBILE_MONEY
    )
    funded_ledger.settle(transaction.channel_ref, "SUCCESS")
    version = funded_ledger.get_budget(approved_budget.budget_id).version

    assert funded_ledger.settle(transaction.channel_ref, "SUCCESS") == []
    assert funded_ledger.settle(transaction.channel_ref, "FAILED", reason="late") == []
    assert funded_ledger.get_budget(approved_budget.budget_id).version == version


def test_each_ignored_settlement_is_counted_once(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    transaction = funded_ledger.disburse(
        admin, approved_budget.budget_id, "1000", method=DisbursementMethod.MOBILE_MONEY
    )
    before = replays_ignored()

    funded_ledger.settle(transaction.channel_ref, "SUCCESS")
    assert replays_ignored() == before

    funded_ledger.settle(transaction.channel_ref, "SUCCESS")
    funded_ledger.settle(transaction.channel_ref, "SUCCESS")
    assert replays_ignored() == before + 2


def test_settle_by_our_reference(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    transaction = funded_ledger.disburse(
        admin, approved_budget.budget_id, "10000", method=DisbursementMethod.MOBILE_MONEY
    )

    funded_ledger.settle(transaction.reference, "FAILED", reason="insufficient float")

    settled = funded_ledger.get_budget(approved_budget.budget_id)
    failed = settled.find_transaction(transaction.transaction_id)
    assert failed.status == TransactionStatus.FAILED
    assert failed.failure_reason == "insufficient float"
    assert settled.headroom() == Decimal("80000.00")


def test_settle_unknown_reference(funded_ledger: FundLedger) -> None:
    with pytest.raises(TransactionNotFound):
        funded_ledger.settle("mobile_money-unknown", "SUCCESS")


def test_channel_refusal_marks_transaction_failed(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    funded_ledger.channels[DisbursementMethod.OTHER] = DecliningChannel()

    with pytest.raises(ExternalChannelFailure):
        funded_ledger.disburse(admin, approved_budget.budget_id, "10000", method=DisbursementMethod.OTHER)

    budget = funded_ledger.get_budget(approved_budget.budget_id)
    [transaction] = budget.transactions
    assert transaction.status == TransactionStatus.FAILED
    assert transaction.failure_reason == "destination account closed"
    assert budget.headroom() == Decimal("80000.00")
    assert budget.status == BudgetStatus.APPROVED


# Revocation


def test_revoke_reverses_and_returns_allocation(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    """30,000 of 80,000 paid out: the 30,000 is reversed and everything returns to the pool"""
    paid = funded_ledger.disburse(admin, approved_budget.budget_id, "30000")
    assert funded_ledger.pool_balance().balance == Decimal("920000.00")

    revoked = funded_ledger.revoke_budget(admin, approved_budget.budget_id, reason="Project cancelled")

    assert revoked.status == BudgetStatus.REVOKED
    reversals = [t for t in revoked.transactions if t.type == TransactionType.REVERSAL]
    assert len(reversals) == 1
    assert reversals[0].amount == Decimal("30000.00")
    assert reversals[0].reverses == paid.transaction_id
    assert reversals[0].reference == f"REV-{paid.reference}"
    assert revoked.disbursed_amount() == Decimal("0.00")
    assert funded_ledger.pool_balance().balance == Decimal("1000000.00")


def test_revoke_cancels_pending(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    transaction = funded_ledger.disburse(
        admin, approved_budget.budget_id, "10000", method=DisbursementMethod.MOBILE_MONEY
    )

    revoked = funded_ledger.revoke_budget(admin, approved_budget.budget_id)

    assert revoked.find_transaction(transaction.transaction_id).status == TransactionStatus.CANCELLED
    # A late callback finds nothing left to settle
    assert funded_ledger.settle(transaction.channel_ref, "SUCCESS") == []


def test_revoked_budget_is_terminal(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    funded_ledger.revoke_budget(admin, approved_budget.budget_id)

    with pytest.raises(InvalidTransition):
        funded_ledger.disburse(admin, approved_budget.budget_id, "100")
    with pytest.raises(InvalidTransition):
        funded_ledger.revoke_budget(admin, approved_budget.budget_id)


# Concurrency


def test_concurrent_disbursements_never_overshoot(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    """Twelve racing payments of 10,000 against 80,000: exactly eight land"""

    def pay(_: int) -> str:
        try:
            funded_ledger.disburse(admin, approved_budget.budget_id, "10000")
        except InsufficientAllocation:
            return "refused"
        return "paid"

    with ThreadPoolExecutor(max_workers=6) as pool:
        outcomes = list(pool.map(pay, range(12)))

    assert outcomes.count("paid") == 8
    assert outcomes.count("refused") == 4
    budget = funded_ledger.get_budget(approved_budget.budget_id)
    assert budget.disbursed_amount() == Decimal("80000.00")
    assert budget.status == BudgetStatus.DISBURSED


def test_synchronous_channel_asked_once_per_disbursement(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor
) -> None:
    """Racing payments reload and retry; none of the retries pays twice"""
    channel = CountingChannel()
    funded_ledger.channels[DisbursementMethod.OTHER] = channel

    def pay(_: int) -> str:
        try:
            funded_ledger.disburse(
                admin, approved_budget.budget_id, "5000", method=DisbursementMethod.OTHER
            )
        except InsufficientAllocation:
            return "refused"
        return "paid"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(pay, range(20)))

    assert outcomes.count("paid") == 16
    assert channel.calls == 20
    transactions = funded_ledger.list_transactions(approved_budget.budget_id)
    assert {t.channel for t in transactions} == {"counting"}
