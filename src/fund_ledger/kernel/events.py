"""
Base Event model for the ledger

Events are immutable facts about money moving through the system. The
event log is the ledger of record: budget balances, pool balance and
transaction state are all folded from it, never stored on the side.

Fun fact: Accountants never erase a ledger line - they post a correcting
entry. Reversal transactions in this package follow the same rule.
"""

from datetime import datetime
from typing import Callable

from pydantic import BaseModel, Field


class Event(BaseModel):
    """
    Base event class - all ledger events share this envelope

    Events are:
    - Immutable (never modified after creation)
    - Append-only (never deleted)
    - Versioned per stream (optimistic locking per budget / pool)
    - Keyed by command_id (idempotent replays)

    The domain-specific content lives in ``payload``, produced from the
    pydantic payload models in each module's ``events.py``.
    """

    event_id: str = Field(
        ...,
        description="Unique event identifier (UUIDv7 for time-ordering)",
    )

    stream_id: str = Field(
        ...,
        description="Aggregate identifier: a budget id or 'fund-pool'",
    )

    stream_type: str = Field(
        ...,
        description="Type of aggregate: 'budget' or 'fund_pool'",
    )

    event_type: str = Field(
        ...,
        description="Specific event type: 'BudgetApproved', 'DisbursementSettled', etc.",
    )

    occurred_at: datetime = Field(
        ...,
        description="UTC timestamp when event occurred",
    )

    actor_id: str | None = Field(
        default=None,
        description="ID of actor who triggered this event (None for system events)",
    )

    command_id: str = Field(
        ...,
        description="ID of command that caused this event (idempotency key)",
    )

    payload: dict = Field(
        default_factory=dict,
        description="Event-specific data (must be JSON-serializable)",
    )

    version: int = Field(
        ...,
        description="Stream version after this event (monotonically increasing)",
        ge=1,
    )

    position: int | None = Field(
        default=None,
        description="Global commit position, assigned by the event store on load",
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "event_id": "01908e9a-3b87-7000-8000-123456789abc",
                    "stream_id": "01908e9a-3b87-7000-8000-aaaaaaaaaaaa",
                    "stream_type": "budget",
                    "event_type": "BudgetApproved",
                    "occurred_at": "2025-01-15T10:30:00Z",
                    "actor_id": "admin-1",
                    "command_id": "cmd-123",
                    "payload": {"allocated_amount": "80000.00"},
                    "version": 2,
                }
            ]
        },
    }


def create_event(
    *,
    event_id: str,
    stream_id: str,
    stream_type: str,
    event_type: str,
    occurred_at: datetime,
    command_id: str,
    version: int,
    actor_id: str | None = None,
    payload: dict | None = None,
) -> Event:
    """
    Factory function for creating events with all required fields
    """
    return Event(
        event_id=event_id,
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=occurred_at,
        actor_id=actor_id,
        command_id=command_id,
        payload=payload or {},
        version=version,
    )


class StreamWriter:
    """
    Builds consecutive events for one stream

    Handlers often emit several events for the same budget in one command
    (e.g., an expenditure plus the supplementary request it raises). The
    writer numbers them from the stream's current version so the event
    store's optimistic check sees exactly one expected version per stream.
    """

    def __init__(
        self,
        *,
        stream_id: str,
        stream_type: str,
        current_version: int,
        command_id: str,
        actor_id: str | None,
        occurred_at: datetime,
        id_factory: Callable[[], str],
    ) -> None:
        self.stream_id = stream_id
        self.stream_type = stream_type
        self.version = current_version
        self.command_id = command_id
        self.actor_id = actor_id
        self.occurred_at = occurred_at
        self._id_factory = id_factory
        self.events: list[Event] = []

    def emit(self, event_type: str, payload: BaseModel) -> Event:
        """Append the next event for this stream and return it"""
        self.version += 1
        event = create_event(
            event_id=self._id_factory(),
            stream_id=self.stream_id,
            stream_type=self.stream_type,
            event_type=event_type,
            occurred_at=self.occurred_at,
            command_id=self.command_id,
            actor_id=self.actor_id,
            payload=payload.model_dump(mode="json"),
            version=self.version,
        )
        self.events.append(event)
        return event
