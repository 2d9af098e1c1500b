"""
Notifications Module - Best-effort messages about committed ledger events

The router listens on the in-process bus; delivery failures are logged
and counted, never raised back into the write that produced the event.
"""

from fund_ledger.notifications.dispatcher import InMemoryDispatcher, LoggingDispatcher
from fund_ledger.notifications.models import Notification, NotificationType

__all__ = ["InMemoryDispatcher", "LoggingDispatcher", "Notification", "NotificationType"]
