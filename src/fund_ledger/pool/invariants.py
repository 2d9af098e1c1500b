"""
Fund Pool Invariants - the balance never goes negative, and a remittance
is decided exactly once
"""

from decimal import Decimal

from fund_ledger.kernel.errors import InsufficientBalance, InvalidAmount, InvalidTransition
from fund_ledger.kernel.money import ZERO
from fund_ledger.pool.models import FundPool, Remittance, RemittanceStatus


def validate_adjustment(pool: FundPool, delta: Decimal) -> None:
    """
    Raises:
        InvalidAmount: If delta is zero (an adjustment must move money)
        InsufficientBalance: If balance + delta would be negative
    """
    if delta == ZERO:
        raise InvalidAmount(delta, "pool adjustment must be non-zero")
    if pool.balance + delta < ZERO:
        raise InsufficientBalance(delta=delta, balance=pool.balance)


def validate_remittance_amount(amount: Decimal) -> None:
    if amount <= ZERO:
        raise InvalidAmount(amount, "remittance must be positive")


def validate_remittance_pending(remittance: Remittance, action: str) -> None:
    """
    Raises:
        InvalidTransition: If the remittance was already verified or rejected
    """
    if remittance.status != RemittanceStatus.PENDING:
        raise InvalidTransition(
            "Remittance",
            remittance.remittance_id,
            remittance.status.value,
            action,
            [RemittanceStatus.PENDING.value],
        )
