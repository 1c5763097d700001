"""Ledger gateway protocol — account reads and transaction submission."""
from typing import Protocol, Sequence

from ..models import (
    BankConfig,
    LendingAccount,
    SignedTransaction,
    SimulationResult,
    SubmissionReceipt,
)


class LedgerGateway(Protocol):
    """Abstract interface for reading lending state and sending transactions."""

    async def ping(self) -> None: ...

    async def list_account_ids(self) -> list[str]: ...

    async def get_accounts(self, ids: Sequence[str]) -> list[LendingAccount]: ...

    async def get_bank_configs(
        self, ids: Sequence[str] | None = None
    ) -> list[BankConfig]: ...

    async def simulate_transaction(self, tx: SignedTransaction) -> SimulationResult: ...

    async def submit_transaction(self, tx: SignedTransaction) -> SubmissionReceipt: ...
