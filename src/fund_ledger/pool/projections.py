"""
Fund Pool Projection - folds the fund-pool stream and remittance streams

The balance is the running sum of the stream's movements; each event
also records balance_after, which replay cross-checks.
"""

from decimal import Decimal

from fund_ledger.kernel.events import Event
from fund_ledger.kernel.logging import get_logger
from fund_ledger.kernel.errors import RemittanceNotFound
from fund_ledger.pool.events import (
    PoolAdjusted,
    PoolCredited,
    PoolDebited,
    PoolRemittanceReceived,
    RemittanceRejected,
    RemittanceSubmitted,
    RemittanceVerified,
)
from fund_ledger.pool.models import (
    FundPool,
    MovementKind,
    PoolMovement,
    Remittance,
    RemittanceStatus,
)

logger = get_logger(__name__)


def apply_pool_event(pool: FundPool, event: Event) -> FundPool:
    """Apply one fund-pool event in place and return the pool"""
    if event.event_type == "PoolAdjusted":
        payload = PoolAdjusted.model_validate(event.payload)
        _move(
            pool,
            event,
            kind=MovementKind.DEPOSIT if payload.delta > 0 else MovementKind.WITHDRAWAL,
            delta=payload.delta,
            recorded_balance=payload.balance_after,
            note=payload.note,
        )
    elif event.event_type == "PoolDebited":
        payload = PoolDebited.model_validate(event.payload)
        _move(
            pool,
            event,
            kind=MovementKind.ALLOCATION,
            delta=-payload.amount,
            recorded_balance=payload.balance_after,
            note=payload.reason,
            budget_id=payload.budget_id,
        )
    elif event.event_type == "PoolCredited":
        payload = PoolCredited.model_validate(event.payload)
        _move(
            pool,
            event,
            kind=MovementKind.RELEASE,
            delta=payload.amount,
            recorded_balance=payload.balance_after,
            note=payload.reason,
            budget_id=payload.budget_id,
        )
    elif event.event_type == "PoolRemittanceReceived":
        payload = PoolRemittanceReceived.model_validate(event.payload)
        _move(
            pool,
            event,
            kind=MovementKind.REMITTANCE,
            delta=payload.amount,
            recorded_balance=payload.balance_after,
            note=f"remittance from {payload.remitted_by}",
            remittance_id=payload.remittance_id,
        )
    pool.version = event.version
    return pool


def _move(
    pool: FundPool,
    event: Event,
    *,
    kind: MovementKind,
    delta: Decimal,
    recorded_balance: Decimal,
    note: str,
    budget_id: str | None = None,
    remittance_id: str | None = None,
) -> None:
    pool.balance += delta
    if pool.balance != recorded_balance:
        logger.warning(
            "Fund pool replay disagrees with recorded balance",
            event_id=event.event_id,
            replayed=str(pool.balance),
            recorded=str(recorded_balance),
        )
    pool.movements.append(
        PoolMovement(
            kind=kind,
            delta=delta,
            balance_after=pool.balance,
            note=note,
            budget_id=budget_id,
            remittance_id=remittance_id,
            actor_id=event.actor_id,
            occurred_at=event.occurred_at,
        )
    )


def replay_pool(events: list[Event]) -> FundPool:
    """Rebuild the fund pool from its stream"""
    pool = FundPool()
    for event in events:
        apply_pool_event(pool, event)
    return pool


def apply_remittance_event(remittance: Remittance | None, event: Event) -> Remittance | None:
    """Apply one remittance event; RemittanceSubmitted starts the fold"""
    if event.event_type == "RemittanceSubmitted":
        submitted = RemittanceSubmitted.model_validate(event.payload)
        remittance = Remittance(
            remittance_id=submitted.remittance_id,
            submitted_by=submitted.submitted_by,
            amount=submitted.amount,
            note=submitted.note,
            proof=submitted.proof,
            submitted_at=submitted.submitted_at,
        )
    elif remittance is None:
        return None
    elif event.event_type == "RemittanceVerified":
        verified = RemittanceVerified.model_validate(event.payload)
        remittance.status = RemittanceStatus.VERIFIED
        remittance.decided_by = verified.verified_by
        remittance.decided_at = verified.verified_at
        remittance.decision_note = verified.note
    elif event.event_type == "RemittanceRejected":
        rejected = RemittanceRejected.model_validate(event.payload)
        remittance.status = RemittanceStatus.REJECTED
        remittance.decided_by = rejected.rejected_by
        remittance.decided_at = rejected.rejected_at
        remittance.decision_note = rejected.note
    remittance.version = event.version
    return remittance


def replay_remittance(events: list[Event], remittance_id: str) -> Remittance:
    """
    Rebuild one remittance from its stream

    Raises:
        RemittanceNotFound: If the stream holds no remittance
    """
    remittance = None
    for event in events:
        remittance = apply_remittance_event(remittance, event)
    if remittance is None:
        raise RemittanceNotFound(remittance_id)
    return remittance


def replay_remittances(events: list[Event]) -> list[Remittance]:
    """Fold every remittance found in a commit-ordered event list"""
    remittances: dict[str, Remittance] = {}
    for event in events:
        folded = apply_remittance_event(remittances.get(event.stream_id), event)
        if folded is not None:
            remittances[event.stream_id] = folded
    return list(remittances.values())
