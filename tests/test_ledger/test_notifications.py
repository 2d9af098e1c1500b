"""
Tests for notification routing

Notifications are sent only for committed events, and a broken transport
never undoes or blocks a ledger write.
"""

from datetime import datetime, timezone

from fund_ledger.budget.models import Budget, DisbursementMethod
from fund_ledger.kernel.authz import Actor
from fund_ledger.kernel.errors import InsufficientPool
from fund_ledger.kernel.events import create_event
from fund_ledger.ledger import FundLedger
from fund_ledger.notifications.dispatcher import InMemoryDispatcher
from fund_ledger.notifications.models import Notification, NotificationType
from fund_ledger.notifications.router import ADMINS, OWNER, NotificationRouter


class BrokenDispatcher:
    """Transport that is always down"""

    def __init__(self) -> None:
        self.attempts = 0

    def notify(self, user_ids: list[str], notification: Notification) -> None:
        self.attempts += 1
        raise ConnectionError("push gateway unreachable")


def types_for(dispatcher: InMemoryDispatcher, user_id: str) -> list[NotificationType]:
    return [n.type for n in dispatcher.for_user(user_id)]


def test_submission_goes_to_admins(
    ledger: FundLedger, owner: Actor, dispatcher: InMemoryDispatcher
) -> None:
    ledger.create_budget(owner, title="Library books", requested_amount="100000")

    assert types_for(dispatcher, "alice") == [NotificationType.BUDGET_SUBMITTED]
    assert types_for(dispatcher, "bob") == []


def test_draft_notifies_nobody(ledger: FundLedger, owner: Actor, dispatcher: InMemoryDispatcher) -> None:
    ledger.create_budget(owner, title="Library books", requested_amount="100000", submit=False)
    assert dispatcher.for_user("alice") == []


def test_owner_hears_about_approval_and_payment(
    funded_ledger: FundLedger,
    approved_budget: Budget,
    admin: Actor,
    dispatcher: InMemoryDispatcher,
) -> None:
    funded_ledger.disburse(admin, approved_budget.budget_id, "80000")

    assert types_for(dispatcher, "bob") == [
        NotificationType.BUDGET_APPROVED,
        NotificationType.BUDGET_DISBURSED,
    ]
    approval = dispatcher.for_user("bob")[0]
    assert approval.data["budget_id"] == approved_budget.budget_id
    assert "80,000.00" in approval.message


def test_failed_settlement_goes_to_admins(
    funded_ledger: FundLedger,
    approved_budget: Budget,
    admin: Actor,
    dispatcher: InMemoryDispatcher,
) -> None:
    transaction = funded_ledger.disburse(
        admin, approved_budget.budget_id, "1000", method=DisbursementMethod.MOBILE_MONEY
    )
    funded_ledger.settle(transaction.channel_ref, "FAILED", reason="wrong number")

    latest = dispatcher.for_user("alice")[-1]
    assert latest.type == NotificationType.DISBURSEMENT_FAILED
    assert "wrong number" in latest.message


def test_rejected_command_sends_nothing(
    ledger: FundLedger, admin: Actor, owner: Actor, dispatcher: InMemoryDispatcher
) -> None:
    budget = ledger.create_budget(owner, title="Library books", requested_amount="100000")

    try:
        ledger.approve_budget(admin, budget.budget_id)
    except InsufficientPool:
        pass

    assert dispatcher.for_user("bob") == []


def test_broken_transport_does_not_block_writes(temp_db, test_time, owner: Actor, admin: Actor) -> None:
    broken = BrokenDispatcher()
    ledger = FundLedger(temp_db, time_provider=test_time, dispatcher=broken, admin_ids=["alice"])
    ledger.adjust_pool(admin, "1000", note="Float")

    budget = ledger.create_budget(owner, title="Library books", requested_amount="100")
    approved = ledger.approve_budget(admin, budget.budget_id)

    assert broken.attempts == 2
    assert approved.allocated_amount == budget.requested_amount


def test_mark_all_read(ledger: FundLedger, owner: Actor, dispatcher: InMemoryDispatcher) -> None:
    ledger.create_budget(owner, title="First request", requested_amount="100")
    ledger.create_budget(owner, title="Second request", requested_amount="100")

    assert dispatcher.mark_all_read("alice") == 2
    assert dispatcher.for_user("alice", unread_only=True) == []
    assert len(dispatcher.for_user("alice")) == 2


def test_route_ignores_bookkeeping_events() -> None:
    router = NotificationRouter(InMemoryDispatcher(), owner_lookup=lambda _: "bob")
    event = create_event(
        event_id="e-1",
        stream_id="fund-pool",
        stream_type="fund_pool",
        event_type="PoolDebited",
        occurred_at=datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc),
        command_id="cmd-1",
        version=1,
        payload={"budget_id": "b-1", "amount": "100.00"},
    )
    assert router.route(event) is None


def test_route_revocation_to_owner() -> None:
    router = NotificationRouter(InMemoryDispatcher(), owner_lookup=lambda _: "bob")
    event = create_event(
        event_id="e-1",
        stream_id="b-1",
        stream_type="budget",
        event_type="BudgetRevoked",
        occurred_at=datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc),
        command_id="cmd-1",
        version=4,
        payload={"budget_id": "b-1", "reason": "Project cancelled"},
    )

    audience, notification = router.route(event)

    assert audience == OWNER
    assert audience != ADMINS
    assert notification.type == NotificationType.BUDGET_REVOKED
    assert notification.message == "Your budget was revoked: Project cancelled"
