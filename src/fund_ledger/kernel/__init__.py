"""
Kernel - event sourcing, money and access control shared by every module

Budgets, the fund pool and the monitor stream are all event streams in one
SQLite store. The kernel owns that store, the clock and id sources, the
Decimal money helpers, actors and capabilities, the audit trail and the
error hierarchy the CLI and HTTP layers translate for users.

Fun fact: Event sourcing was inspired by accountants - they never erase ledger
entries, they add correcting entries. A fund ledger is the one domain where
the metaphor is not a metaphor.
"""

from fund_ledger.kernel.authz import Actor, Capability, Role, authorize
from fund_ledger.kernel.errors import (
    AuthorizationError,
    InvariantViolation,
    LedgerError,
    NotFound,
    StreamVersionConflict,
)
from fund_ledger.kernel.event_store import SQLiteEventStore
from fund_ledger.kernel.events import Event
from fund_ledger.kernel.ids import generate_id
from fund_ledger.kernel.money import split_evenly, to_amount
from fund_ledger.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    "Actor",
    "Capability",
    "Role",
    "authorize",
    "LedgerError",
    "InvariantViolation",
    "AuthorizationError",
    "NotFound",
    "StreamVersionConflict",
    "SQLiteEventStore",
    "Event",
    "generate_id",
    "to_amount",
    "split_evenly",
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
]
