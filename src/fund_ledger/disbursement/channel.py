"""
Disbursement channels - where money actually leaves

A channel is the boundary to whatever moves the money: a cashier handing
out notes, a bank file upload, a mobile-money gateway. The ledger only
needs two things from it:

- initiate(amount, destination, reference) → channel_ref
- optionally query(channel_ref) → final status, used by the
  reconciliation tick for settlements that never called back

Synchronous channels pay on the spot; their transactions are recorded
COMPLETED in one event. Asynchronous channels acknowledge and settle
later through FundLedger.settle().
"""

import threading
from decimal import Decimal
from typing import Protocol

from fund_ledger.budget.models import TransactionStatus
from fund_ledger.kernel.ids import generate_id


class DisbursementChannel(Protocol):
    """
    Protocol every payment channel implements

    Synchronous channels record a payment that was made by hand. The
    ledger calls their initiate() once per disburse call, before the
    headroom checks run, so it must not move money. Asynchronous channels
    are called only after the PENDING transaction is committed.
    """

    name: str
    synchronous: bool

    def initiate(self, amount: Decimal, destination: str | None, reference: str) -> str:
        """
        Hand the payment to the channel

        Returns:
            The channel's own reference for the payment

        Raises:
            ExternalChannelFailure: If the channel rejects the payment
            TimeoutError: If the channel doesn't answer in time
        """
        ...


class ManualChannel:
    """
    Payments completed by hand (cash, cheque, manual bank transfer)

    The admin recording the disbursement is attesting that the money
    left, so the channel reference is simply our own reference.
    """

    synchronous = True

    def __init__(self, name: str = "manual") -> None:
        self.name = name

    def initiate(self, amount: Decimal, destination: str | None, reference: str) -> str:
        return reference


class DeferredChannel:
    """
    In-process asynchronous channel

    Accepts every payment, hands back a fresh channel reference and
    remembers it. Settlement arrives later through FundLedger.settle();
    query() answers only for outcomes recorded with resolve(), which is
    how a gateway's status endpoint would behave.
    """

    synchronous = False

    def __init__(self, name: str = "deferred") -> None:
        self.name = name
        self.initiated: dict[str, dict] = {}
        self._outcomes: dict[str, TransactionStatus] = {}
        self._lock = threading.Lock()

    def initiate(self, amount: Decimal, destination: str | None, reference: str) -> str:
        channel_ref = f"{self.name}-{generate_id()}"
        with self._lock:
            self.initiated[channel_ref] = {
                "amount": amount,
                "destination": destination,
                "reference": reference,
            }
        return channel_ref

    def resolve(self, channel_ref: str, outcome: TransactionStatus) -> None:
        """Record the channel-side outcome for a later query()"""
        with self._lock:
            self._outcomes[channel_ref] = outcome

    def query(self, channel_ref: str) -> TransactionStatus | None:
        """Final status if the channel knows it, None while still in flight"""
        with self._lock:
            return self._outcomes.get(channel_ref)
