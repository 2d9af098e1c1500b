"""
In-process Event Bus

Synchronous pub/sub for committed ledger events. The ledger publishes
only after the events are durably committed; subscribers (notification
routing today) are side channels and can never fail or roll back the
write that triggered them.

Fun fact: This is the "observer" pattern - the ledger doesn't know who is
listening. In production the same interface could front a queue without
changing domain code.
"""

from collections import defaultdict
from typing import Callable

from fund_ledger.kernel.events import Event
from fund_ledger.kernel.logging import get_logger

logger = get_logger(__name__)


EventHandler = Callable[[Event], None]

# Subscribe to this to receive every published event
ALL_EVENTS = "*"


class InProcessBus:
    """
    Handlers run in registration order, type-specific ones before
    ALL_EVENTS subscribers. A failing handler is logged and skipped.
    """

    def __init__(self) -> None:
        self._event_handlers: defaultdict[str, list[EventHandler]] = defaultdict(list)

    def register_event_handler(self, event_type: str, handler: EventHandler) -> None:
        """
        Args:
            event_type: e.g. "BudgetApproved", or ALL_EVENTS
            handler: Called with each committed event of that type
        """
        self._event_handlers[event_type].append(handler)

    def publish_events(self, events: list[Event]) -> int:
        """
        Deliver committed events in commit order

        Returns:
            Number of handler invocations that raised
        """
        failures = 0
        for event in events:
            handlers = self._event_handlers.get(event.event_type, []) + self._event_handlers.get(
                ALL_EVENTS, []
            )
            for handler in handlers:
                try:
                    handler(event)
                except Exception as e:
                    failures += 1
                    logger.error(
                        "Event handler failed",
                        event_type=event.event_type,
                        event_id=event.event_id,
                        stream_id=event.stream_id,
                        error=str(e),
                        exc_info=True,
                    )
        return failures
