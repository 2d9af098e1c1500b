"""
Budget Module - Request, review and approval of budgets

This module implements the budget lifecycle and the folded ledger state
every other module decides against:
- Budget requests with line items (DRAFT → PENDING)
- Admin review: revision requests, approval with an allocation, rejection
- Batch plans for budgets paid out in instalments
- Derived totals (disbursed, spent, effective allocation) computed from
  the transaction and expenditure records, never stored

Fun fact: The word "budget" comes from the Old French "bougette", a small
leather purse. The Chancellor of the Exchequer still carries a red box.
"""

from fund_ledger.budget.models import (
    Budget,
    BudgetStatus,
    DisbursementMethod,
    DisbursementType,
    Priority,
    Transaction,
    TransactionStatus,
)

__all__ = [
    "Budget",
    "BudgetStatus",
    "DisbursementMethod",
    "DisbursementType",
    "Priority",
    "Transaction",
    "TransactionStatus",
]
