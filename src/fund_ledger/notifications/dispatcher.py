"""
Notification dispatchers - delivery is somebody else's problem

The ledger hands a Notification and a list of user ids to a dispatcher
and moves on. Real deployments plug in a push/socket/email transport;
the two dispatchers here keep messages in memory or write them to the log.
"""

import threading
from collections import defaultdict
from typing import Protocol

from fund_ledger.kernel.logging import get_logger
from fund_ledger.notifications.models import Notification

logger = get_logger(__name__)


class NotificationDispatcher(Protocol):
    """Protocol for notification transports"""

    def notify(self, user_ids: list[str], notification: Notification) -> None:
        """
        Deliver a notification to every user in user_ids

        May raise; the router logs and counts the failure and carries on.
        """
        ...


class InMemoryDispatcher:
    """Keeps every notification per user, with read flags (inbox semantics)"""

    def __init__(self) -> None:
        self._inbox: defaultdict[str, list[dict]] = defaultdict(list)
        self._lock = threading.Lock()

    def notify(self, user_ids: list[str], notification: Notification) -> None:
        with self._lock:
            for user_id in user_ids:
                self._inbox[user_id].append({"notification": notification, "read": False})

    def for_user(self, user_id: str, unread_only: bool = False) -> list[Notification]:
        with self._lock:
            return [
                entry["notification"]
                for entry in self._inbox.get(user_id, [])
                if not (unread_only and entry["read"])
            ]

    def mark_all_read(self, user_id: str) -> int:
        """Returns: number of notifications flipped to read"""
        with self._lock:
            unread = [e for e in self._inbox.get(user_id, []) if not e["read"]]
            for entry in unread:
                entry["read"] = True
            return len(unread)


class LoggingDispatcher:
    """Writes notifications to the structured log (CLI and development default)"""

    def notify(self, user_ids: list[str], notification: Notification) -> None:
        logger.info(
            "Notification",
            recipients=user_ids,
            notification_type=notification.type.value,
            title=notification.title,
            message=notification.message,
        )
