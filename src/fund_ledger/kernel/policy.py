"""
Ledger Policy - Tunable parameters for the budget lifecycle

The LedgerPolicy collects the knobs that shape how budgets move through
approval, disbursement and settlement: limits on pending requests, batch
counts, settlement windows and retry budgets.

Fun fact: The Kenyan shilling is divided into 100 cents, which is why the
minor unit here is 0.01 - the same as most of the world's currencies.
"""

from datetime import timedelta

from pydantic import BaseModel, Field


class LedgerPolicy(BaseModel):
    """
    Operational parameters for the fund ledger

    The defaults mirror how the product runs today: five pending requests
    per owner, at most twelve disbursement batches, thirty minutes for a
    payment channel to confirm a transfer.
    """

    policy_version: str = Field(
        default="1.0",
        description="Policy version for tracking changes over time",
    )

    currency: str = Field(
        default="KES",
        min_length=3,
        max_length=3,
        description="ISO 4217 currency code all amounts are denominated in",
    )

    # Settlement
    settlement_timeout_minutes: int = Field(
        default=30,
        ge=1,
        description="Minutes a PENDING disbursement may wait for its settlement callback",
    )

    # Request limits
    max_pending_budgets_per_owner: int = Field(
        default=5,
        ge=1,
        description="Maximum number of PENDING budgets a single owner may hold",
    )

    max_batch_count: int = Field(
        default=12,
        ge=1,
        description="Maximum number of batches a budget allocation may be split into",
    )

    min_revision_reason_length: int = Field(
        default=10,
        ge=1,
        description="Minimum length of the reason given when requesting a revision",
    )

    min_budget_title_length: int = Field(
        default=3,
        ge=1,
        description="Minimum length of a budget title",
    )

    # Concurrency
    max_conflict_retries: int = Field(
        default=25,
        ge=1,
        description="Attempts before a contended budget or pool write gives up",
    )

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "description": "Operational parameters for the budget lifecycle ledger"
        },
    }

    @property
    def settlement_timeout(self) -> timedelta:
        """Settlement window as a timedelta"""
        return timedelta(minutes=self.settlement_timeout_minutes)

