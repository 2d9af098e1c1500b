"""
Audit Recorder - immutable record of every state-changing action

Audit rows live in their own table but are written on the same SQLite
connection, inside the same transaction, as the events they describe.
Either both land or neither does: a mutation whose audit row cannot be
written is not committed.

Fun fact: "Audit" comes from the Latin audire, to hear - Roman accounts
were read aloud to an auditor who listened for inconsistencies.
"""

import json
import sqlite3
from datetime import datetime

from pydantic import BaseModel, Field

from fund_ledger.kernel.events import Event
from fund_ledger.kernel.ids import generate_id

# event_type -> (action, entity)
AUDIT_ACTIONS: dict[str, tuple[str, str]] = {
    "BudgetCreated": ("BUDGET_CREATE", "Budget"),
    "BudgetSubmitted": ("BUDGET_SUBMIT", "Budget"),
    "BudgetItemAdded": ("BUDGET_ITEM_ADD", "BudgetItem"),
    "BudgetItemCorrected": ("BUDGET_ITEM_CORRECT", "BudgetItem"),
    "RevisionRequested": ("BUDGET_REQUEST_REVISION", "Budget"),
    "BudgetRevised": ("BUDGET_REVISE", "Budget"),
    "BudgetApproved": ("BUDGET_APPROVE", "Budget"),
    "BudgetRejected": ("BUDGET_REJECT", "Budget"),
    "BudgetDeleted": ("BUDGET_DELETE", "Budget"),
    "BudgetRevoked": ("BUDGET_REVOKE", "Budget"),
    "BatchesRestructured": ("BUDGET_REBATCH", "Batch"),
    "DisbursementInitiated": ("DISBURSEMENT_CREATE", "Transaction"),
    "DisbursementDispatched": ("DISBURSEMENT_DISPATCH", "Transaction"),
    "DisbursementSettled": ("DISBURSEMENT_SETTLE", "Transaction"),
    "SupplementaryRequested": ("SUPPLEMENTARY_REQUEST", "SupplementaryBudget"),
    "SupplementaryDecided": ("SUPPLEMENTARY_DECIDE", "SupplementaryBudget"),
    "ExpenditurePosted": ("EXPENDITURE_CREATE", "Expenditure"),
    "ExpenditureVoided": ("EXPENDITURE_VOID", "Expenditure"),
    "PoolAdjusted": ("FUND_POOL_UPDATED", "FundPool"),
    "PoolDebited": ("FUND_POOL_DEDUCT", "FundPool"),
    "PoolCredited": ("FUND_POOL_CREDIT", "FundPool"),
    "PoolRemittanceReceived": ("FUND_POOL_UPDATED", "FundPool"),
    "RemittanceSubmitted": ("REMITTANCE_CREATE", "Remittance"),
    "RemittanceVerified": ("REMITTANCE_VERIFY", "Remittance"),
    "RemittanceRejected": ("REMITTANCE_REJECT", "Remittance"),
    "LedgerDriftDetected": ("LEDGER_DRIFT_DETECTED", "Budget"),
    "BudgetOverspendDetected": ("BUDGET_OVERSPEND_DETECTED", "Budget"),
}

# payload key holding the id of the entity an event touches
ENTITY_ID_KEYS: dict[str, str] = {
    "BudgetItem": "item_id",
    "Transaction": "transaction_id",
    "SupplementaryBudget": "supplementary_id",
    "Expenditure": "expenditure_id",
    "Remittance": "remittance_id",
}


class AuditEntry(BaseModel):
    """One immutable audit row"""

    audit_id: str
    action: str
    entity: str
    entity_id: str
    user_id: str | None
    changes: dict = Field(default_factory=dict)
    created_at: datetime
    event_id: str | None = None
    stream_id: str | None = None

    model_config = {"frozen": True}


def _entity_id(entity: str, event: Event) -> str:
    payload = event.payload
    key = ENTITY_ID_KEYS.get(entity)
    if key == "item_id" and "item" in payload:
        return payload["item"]["item_id"]
    if key and key in payload:
        return str(payload[key])
    return event.stream_id


def audit_entries_for(events: list[Event]) -> list[AuditEntry]:
    """
    Derive the audit rows describing a batch of events

    Every event maps to exactly one row; events without a known action are
    still recorded under their own event type so nothing escapes the trail.
    """
    entries: list[AuditEntry] = []
    for event in events:
        action, entity = AUDIT_ACTIONS.get(event.event_type, (event.event_type, event.stream_type))
        entries.append(
            AuditEntry(
                audit_id=generate_id(),
                action=action,
                entity=entity,
                entity_id=_entity_id(entity, event),
                user_id=event.actor_id,
                changes=event.payload,
                created_at=event.occurred_at,
                event_id=event.event_id,
                stream_id=event.stream_id,
            )
        )
    return entries


class AuditRecorder:
    """
    Writes and reads audit rows on a connection supplied by the event store

    The recorder never opens its own connection for writes - it always
    shares the caller's transaction.
    """

    def ensure_schema(self, conn: sqlite3.Connection) -> None:
        """Create the audit_log table if it doesn't exist"""
        conn.execute("""
            CREATE TABLE IF NOT EXISTS audit_log (
                audit_id TEXT PRIMARY KEY,
                action TEXT NOT NULL,
                entity TEXT NOT NULL,
                entity_id TEXT NOT NULL,
                user_id TEXT,
                changes_json TEXT NOT NULL,
                created_at TEXT NOT NULL,
                event_id TEXT,
                stream_id TEXT
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_entity "
            "ON audit_log(entity, entity_id)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_user ON audit_log(user_id)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_audit_stream ON audit_log(stream_id)"
        )

    def record(self, conn: sqlite3.Connection, entries: list[AuditEntry]) -> None:
        """
        Insert audit rows within the caller's open transaction

        Raises:
            sqlite3.Error: Propagated to the event store, which rolls back
        """
        conn.executemany(
            """
            INSERT INTO audit_log (
                audit_id, action, entity, entity_id, user_id,
                changes_json, created_at, event_id, stream_id
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    entry.audit_id,
                    entry.action,
                    entry.entity,
                    entry.entity_id,
                    entry.user_id,
                    json.dumps(entry.changes),
                    entry.created_at.isoformat(),
                    entry.event_id,
                    entry.stream_id,
                )
                for entry in entries
            ],
        )

    def list_entries(
        self,
        conn: sqlite3.Connection,
        *,
        entity: str | None = None,
        entity_id: str | None = None,
        user_id: str | None = None,
        action: str | None = None,
        stream_id: str | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """
        Query audit rows, oldest first

        Args:
            entity: Filter by entity type (e.g., "Budget", "FundPool")
            entity_id: Filter by entity id
            user_id: Filter by acting user
            action: Filter by action (e.g., "BUDGET_APPROVE")
            stream_id: Filter by owning stream (every row for one budget)
            limit: Maximum rows to return
        """
        conditions = []
        params: list = []

        if entity:
            conditions.append("entity = ?")
            params.append(entity)
        if entity_id:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if action:
            conditions.append("action = ?")
            params.append(action)
        if stream_id:
            conditions.append("stream_id = ?")
            params.append(stream_id)

        where_clause = " AND ".join(conditions) if conditions else "1=1"
        query = f"""
            SELECT audit_id, action, entity, entity_id, user_id,
                   changes_json, created_at, event_id, stream_id
            FROM audit_log
            WHERE {where_clause}
            ORDER BY rowid ASC
        """
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        cursor = conn.execute(query, params)
        return [
            AuditEntry(
                audit_id=row["audit_id"],
                action=row["action"],
                entity=row["entity"],
                entity_id=row["entity_id"],
                user_id=row["user_id"],
                changes=json.loads(row["changes_json"]),
                created_at=datetime.fromisoformat(row["created_at"]),
                event_id=row["event_id"],
                stream_id=row["stream_id"],
            )
            for row in cursor.fetchall()
        ]
