"""
Notification router - turns committed ledger events into messages

The router subscribes to the event bus. It only ever sees events that
are already durably committed, and a delivery failure is logged and
counted, never raised: the ledger write is the source of truth, the
notification is a best-effort side channel.
"""

from decimal import Decimal
from typing import Callable, Sequence

from fund_ledger.budget.models import TransactionStatus
from fund_ledger.kernel.bus import ALL_EVENTS, InProcessBus
from fund_ledger.kernel.events import Event
from fund_ledger.kernel.logging import get_logger
from fund_ledger.kernel.metrics import notifications_failed_total, notifications_sent_total
from fund_ledger.notifications.dispatcher import NotificationDispatcher
from fund_ledger.notifications.models import Notification, NotificationType
from fund_ledger.pool.models import REMITTANCE_STREAM_TYPE

logger = get_logger(__name__)

OWNER = "owner"
ADMINS = "admins"
REQUESTER = "requester"
SUBMITTER = "submitter"

COMPLETED = TransactionStatus.COMPLETED.value


class NotificationRouter:
    """
    Decides who hears about an event, and what they are told

    Budget owners hear about decisions on their budgets and money moving;
    admins hear about work waiting for them and anything that went wrong.
    Whoever submits a remittance hears whether it was verified.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        owner_lookup: Callable[[str], str | None],
        admin_ids: Sequence[str] = (),
    ) -> None:
        """
        Args:
            dispatcher: Delivery transport
            owner_lookup: budget_id → owner user id (from the budget registry)
            admin_ids: Users who receive admin notifications
        """
        self.dispatcher = dispatcher
        self.owner_lookup = owner_lookup
        self.admin_ids = list(admin_ids)

    def register(self, bus: InProcessBus) -> None:
        bus.register_event_handler(ALL_EVENTS, self.handle)

    def handle(self, event: Event) -> None:
        """Route one committed event (no-op for events nobody is told about)"""
        routed = self.route(event)
        if routed is None:
            return
        audience, notification = routed
        recipients = self._recipients(audience, event)
        if not recipients:
            logger.debug(
                "Notification has no recipients",
                event_type=event.event_type,
                notification_type=notification.type.value,
            )
            return

        try:
            self.dispatcher.notify(recipients, notification)
        except Exception as e:
            notifications_failed_total.labels(notification_type=notification.type.value).inc()
            logger.error(
                "Notification delivery failed",
                event_id=event.event_id,
                notification_type=notification.type.value,
                error=str(e),
            )
            return
        notifications_sent_total.labels(notification_type=notification.type.value).inc()

    def _recipients(self, audience: str, event: Event) -> list[str]:
        if audience == ADMINS:
            return list(self.admin_ids)
        if audience == REQUESTER:
            requester = event.payload.get("requested_by")
            return [requester] if requester else []
        if audience == SUBMITTER:
            submitter = event.payload.get("submitted_by")
            return [submitter] if submitter else []
        owner = self.owner_lookup(event.payload.get("budget_id", event.stream_id))
        return [owner] if owner else []

    def route(self, event: Event) -> tuple[str, Notification] | None:
        """
        Map an event to (audience, notification)

        Returns:
            None for events that don't notify anyone
        """
        p = event.payload
        budget_id = p.get("budget_id", event.stream_id)
        if event.stream_type == REMITTANCE_STREAM_TYPE:
            data = {"remittance_id": event.stream_id}
        else:
            data = {"budget_id": budget_id}
        reason = f": {p['reason']}" if p.get("reason") else ""

        def note(kind: NotificationType, title: str, message: str, **extra) -> Notification:
            return Notification(
                title=title,
                message=message,
                type=kind,
                data={**data, **extra},
                event_id=event.event_id,
                created_at=event.occurred_at,
            )

        event_type = event.event_type
        if event_type == "BudgetCreated" and p.get("submitted"):
            return ADMINS, note(
                NotificationType.BUDGET_SUBMITTED,
                "Budget awaiting approval",
                f"{p['title']} requests {_money(p['requested_amount'])}",
            )
        if event_type == "BudgetSubmitted":
            return ADMINS, note(
                NotificationType.BUDGET_SUBMITTED,
                "Budget awaiting approval",
                "A budget was submitted for review",
            )
        if event_type == "BudgetApproved":
            return OWNER, note(
                NotificationType.BUDGET_APPROVED,
                "Budget approved",
                f"Your budget was approved with {_money(p['allocated_amount'])} allocated",
            )
        if event_type == "BudgetRejected":
            return OWNER, note(
                NotificationType.BUDGET_REJECTED,
                "Budget rejected",
                f"Your budget was rejected{reason}",
            )
        if event_type == "RevisionRequested":
            return OWNER, note(
                NotificationType.BUDGET_REVISION_REQUESTED,
                "Revision requested",
                p["reason"],
                revision_id=p["revision_id"],
            )
        if event_type == "DisbursementInitiated" and p["status"] == COMPLETED:
            return OWNER, note(
                NotificationType.BUDGET_DISBURSED,
                "Funds disbursed",
                f"{_money(p['amount'])} was disbursed to your budget",
                transaction_id=p["transaction_id"],
            )
        if event_type == "DisbursementSettled" and p["outcome"] == COMPLETED:
            return OWNER, note(
                NotificationType.BUDGET_DISBURSED,
                "Funds disbursed",
                "A pending disbursement to your budget has settled",
                transaction_id=p["transaction_id"],
            )
        if event_type == "DisbursementSettled":
            return ADMINS, note(
                NotificationType.DISBURSEMENT_FAILED,
                "Disbursement failed",
                f"Disbursement {p['transaction_id']} failed: {p.get('reason') or 'no reason given'}",
                transaction_id=p["transaction_id"],
            )
        if event_type == "BudgetRevoked":
            return OWNER, note(
                NotificationType.BUDGET_REVOKED,
                "Budget revoked",
                f"Your budget was revoked{reason}",
            )
        if event_type == "SupplementaryRequested":
            return ADMINS, note(
                NotificationType.SUPPLEMENTARY_REQUESTED,
                "Supplementary budget requested",
                f"{_money(p['amount'])} requested: {p['reason']}",
                supplementary_id=p["supplementary_id"],
            )
        if event_type == "SupplementaryDecided":
            approved = p["decision"] == "APPROVED"
            return REQUESTER, note(
                NotificationType.SUPPLEMENTARY_APPROVED
                if approved
                else NotificationType.SUPPLEMENTARY_REJECTED,
                "Supplementary budget " + ("approved" if approved else "rejected"),
                f"Your request for {_money(p['amount'])} was "
                + ("approved" if approved else "rejected"),
                supplementary_id=p["supplementary_id"],
            )
        if event_type == "ExpenditurePosted":
            flag = " (flagged: over plan)" if p.get("flagged") else ""
            return ADMINS, note(
                NotificationType.EXPENDITURE_SUBMITTED,
                "Expenditure recorded",
                f"{p['title']}: {_money(p['amount'])}{flag}",
                expenditure_id=p["expenditure_id"],
            )
        if event_type == "RemittanceSubmitted":
            return ADMINS, note(
                NotificationType.REMITTANCE_SUBMITTED,
                "New remittance submitted",
                f"{p['submitted_by']} submitted a remittance of {_money(p['amount'])}",
            )
        if event_type == "RemittanceVerified":
            return SUBMITTER, note(
                NotificationType.REMITTANCE_VERIFIED,
                "Remittance verified",
                f"Your remittance of {_money(p['amount'])} has been verified and added to the pool",
            )
        if event_type == "RemittanceRejected":
            return SUBMITTER, note(
                NotificationType.REMITTANCE_REJECTED,
                "Remittance rejected",
                f"Your remittance of {_money(p['amount'])} was rejected"
                + (f": {p['note']}" if p.get("note") else ""),
            )
        if event_type in ("LedgerDriftDetected", "BudgetOverspendDetected"):
            return ADMINS, note(
                NotificationType.LEDGER_WARNING,
                "Ledger warning",
                f"{event.event_type} on budget {budget_id}",
            )
        return None


def _money(value: str | Decimal) -> str:
    return f"{Decimal(str(value)):,.2f}"
