"""
Tests for the reconciliation tick

Stale PENDING disbursements are settled from the channel's answer (or
failed on timeout), then every budget is checked for drift and overspend.
"""

from decimal import Decimal

from fund_ledger.budget.models import (
    Budget,
    DisbursementMethod,
    TransactionStatus,
)
from fund_ledger.budget.triggers import MONITOR_STREAM_ID
from fund_ledger.disbursement.events import DisbursementInitiated
from fund_ledger.kernel.authz import Actor
from fund_ledger.kernel.events import StreamWriter
from fund_ledger.kernel.ids import generate_id
from fund_ledger.kernel.time import TestTimeProvider
from fund_ledger.ledger import FundLedger


def pending_mobile_money(ledger: FundLedger, budget: Budget, admin: Actor, amount: str = "10000"):
    return ledger.disburse(admin, budget.budget_id, amount, method=DisbursementMethod.MOBILE_MONEY)


def test_quiet_tick(funded_ledger: FundLedger, approved_budget: Budget) -> None:
    result = funded_ledger.tick()

    assert result.reconciled_events == []
    assert result.triggered_events == []
    assert not result.has_warnings()
    assert "Reconciled: 0" in result.summary()


def test_fresh_pending_disbursement_is_left_alone(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, test_time: TestTimeProvider
) -> None:
    transaction = pending_mobile_money(funded_ledger, approved_budget, admin)
    test_time.advance_minutes(29)

    result = funded_ledger.tick()

    assert result.reconciled_events == []
    budget = funded_ledger.get_budget(approved_budget.budget_id)
    assert budget.find_transaction(transaction.transaction_id).status == TransactionStatus.PENDING


def test_settlement_timeout_fails_transaction(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, test_time: TestTimeProvider
) -> None:
    """No callback within 30 minutes and no answer from the channel: FAILED"""
    transaction = pending_mobile_money(funded_ledger, approved_budget, admin)
    test_time.advance_minutes(31)

    result = funded_ledger.tick()

    assert [e.event_type for e in result.reconciled_events] == ["DisbursementSettled"]
    budget = funded_ledger.get_budget(approved_budget.budget_id)
    failed = budget.find_transaction(transaction.transaction_id)
    assert failed.status == TransactionStatus.FAILED
    assert failed.failure_reason == "settlement_timeout"
    assert budget.headroom() == Decimal("80000.00")


def test_channel_answer_settles_transaction(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, test_time: TestTimeProvider
) -> None:
    """The channel knew the payment went through; only the callback was lost"""
    transaction = pending_mobile_money(funded_ledger, approved_budget, admin)
    channel = funded_ledger.channels[DisbursementMethod.MOBILE_MONEY]
    channel.resolve(transaction.channel_ref, TransactionStatus.COMPLETED)
    test_time.advance_minutes(45)

    funded_ledger.tick()

    budget = funded_ledger.get_budget(approved_budget.budget_id)
    settled = budget.find_transaction(transaction.transaction_id)
    assert settled.status == TransactionStatus.COMPLETED
    assert budget.disbursed_amount() == Decimal("10000.00")

    # The late callback is now a replay
    assert funded_ledger.settle(transaction.channel_ref, "SUCCESS") == []


def test_channel_reported_failure(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, test_time: TestTimeProvider
) -> None:
    transaction = pending_mobile_money(funded_ledger, approved_budget, admin)
    channel = funded_ledger.channels[DisbursementMethod.MOBILE_MONEY]
    channel.resolve(transaction.channel_ref, TransactionStatus.FAILED)
    test_time.advance_minutes(45)

    funded_ledger.tick()

    failed = funded_ledger.get_budget(approved_budget.budget_id).find_transaction(
        transaction.transaction_id
    )
    assert failed.status == TransactionStatus.FAILED
    assert failed.failure_reason == "channel_reported_failure"


def test_overspend_after_rejected_supplementary(
    funded_ledger: FundLedger, approved_budget: Budget, admin: Actor, owner: Actor
) -> None:
    """Spend covered only by a request that was then turned down is overspend"""
    item_id = next(iter(approved_budget.items))
    expenditure = funded_ledger.post_expenditure(
        owner,
        approved_budget.budget_id,
        title="Full textbook order",
        items=[{"budget_item_id": item_id, "spent_amount": "90000"}],
        request_supplementary=True,
    )
    funded_ledger.decide_supplementary(admin, expenditure.supplementary_id, "REJECTED")

    result = funded_ledger.tick()

    assert result.has_warnings()
    assert [e.event_type for e in result.triggered_events] == ["BudgetOverspendDetected"]
    assert result.triggered_events[0].stream_id == MONITOR_STREAM_ID

    warnings = funded_ledger.warnings(approved_budget.budget_id)
    assert len(warnings["overspend_incidents"]) == 1
    assert funded_ledger.health()["overspend_incidents"] == 1


def test_tampered_stream_is_reported_as_drift(
    funded_ledger: FundLedger, approved_budget: Budget, test_time: TestTimeProvider
) -> None:
    """A payment written around the handlers pushes disbursed past the allocation"""
    writer = StreamWriter(
        stream_id=approved_budget.budget_id,
        stream_type="budget",
        current_version=approved_budget.version,
        command_id="manual-sql-fix",
        actor_id="dba",
        occurred_at=test_time.now(),
        id_factory=generate_id,
    )
    writer.emit(
        "DisbursementInitiated",
        DisbursementInitiated(
            budget_id=approved_budget.budget_id,
            transaction_id=generate_id(),
            reference="DISB-MANUAL",
            amount=Decimal("95000.00"),
            method=DisbursementMethod.CASH,
            channel="manual",
            channel_ref="DISB-MANUAL",
            status=TransactionStatus.COMPLETED,
            initiated_by="dba",
            initiated_at=test_time.now(),
        ),
    )
    funded_ledger.event_store.append_many(writer.events)

    result = funded_ledger.tick()

    checks = [e.payload["check"] for e in result.triggered_events]
    assert checks == ["disbursed_exceeds_allocation"]
    assert funded_ledger.health()["drift_incidents"] == 1
