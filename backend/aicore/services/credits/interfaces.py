"""
Collaborator contracts for wallets and the usage ledger.

The orchestration core never computes or writes balances itself; concurrent
safety of balances is the wallet service's responsibility.
"""
from typing import List, Optional, Protocol, runtime_checkable

from aicore.models import CreditCheck, Deduction, OwnerRef, UsageRecord, WalletBalance


@runtime_checkable
class WalletService(Protocol):
    async def check_credits(self, owner: OwnerRef, estimated_credits: float) -> Optional[CreditCheck]:
        """
        Check whether ``owner`` can afford ``estimated_credits``.

        Returns None when the owner has no wallet. ``within_plan_limit`` must
        reflect the monthly plan ceiling independently of the balance.
        """
        ...

    async def debit(self, owner: OwnerRef, record: UsageRecord) -> Deduction:
        """
        Atomically debit ``record.credits_charged`` and append ``record`` to the ledger.

        Both effects happen or neither does: the wallet is never left debited
        without its usage record, nor the record stored without its debit.
        """
        ...

    async def get_balance(self, owner: OwnerRef) -> Optional[WalletBalance]:
        ...


@runtime_checkable
class UsageLedger(Protocol):
    async def append(self, record: UsageRecord) -> str:
        """Durably append a record and return its id."""
        ...

    async def list_records(
        self,
        owner: OwnerRef,
        billing_period: Optional[str] = None,
    ) -> List[UsageRecord]:
        """Records for reporting; never called on the request path."""
        ...
