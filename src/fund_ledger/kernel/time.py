"""
Clock access for the ledger

Approval stamps, disbursement timestamps and the settlement window all
read the clock through a TimeProvider. Production uses the wall clock;
tests pin the clock and walk it forward past settlement windows.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class TimeProvider(Protocol):
    """Anything that can tell the ledger what time it is (UTC)"""

    def now(self) -> datetime: ...


class RealTimeProvider:
    """Wall clock, always timezone-aware UTC"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class TestTimeProvider:
    """
    Pinned clock for tests

    Time only moves when the test says so, which makes settlement
    timeouts and queue ordering reproducible.
    """

    __test__ = False  # not a pytest test class

    def __init__(self, initial_time: datetime) -> None:
        if initial_time.tzinfo is None:
            raise ValueError("TestTimeProvider needs a timezone-aware datetime")
        self._current_time = initial_time

    def now(self) -> datetime:
        return self._current_time

    def advance(self, delta: timedelta) -> None:
        self._current_time += delta

    def advance_minutes(self, minutes: int) -> None:
        self.advance(timedelta(minutes=minutes))


def settlement_cutoff(now: datetime, window: timedelta) -> datetime:
    """
    Oldest creation time a PENDING disbursement may have and still be
    waiting for its callback

    Transactions created strictly before the cutoff are stale.
    """
    return now - window

