"""
Fund Ledger - Event-sourced budget lifecycle and disbursement ledger

Budgets are requested, reviewed, approved against a shared fund pool,
paid out through payment channels and spent against, with every money
movement kept as an append-only, audited ledger record.

Fun fact: Double-entry bookkeeping was written down by Luca Pacioli in
1494. Five centuries later the rule is unchanged: never erase, only add.
"""

from fund_ledger.ledger import FundLedger

__version__ = "0.1.0"
__all__ = ["FundLedger", "__version__"]
