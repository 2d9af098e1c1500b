"""
Fund Pool Module - The single balance every allocation draws from, and
the remittances that refill it

Fun fact: The pool is the only stream in the ledger with exactly one
instance, so it is also the one every approval serializes on.
"""

from fund_ledger.pool.models import FundPool, PoolMovement, Remittance, RemittanceStatus

__all__ = ["FundPool", "PoolMovement", "Remittance", "RemittanceStatus"]
