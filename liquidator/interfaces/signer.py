"""Signer protocol — wallet abstraction."""
from typing import Protocol

from ..models import LiquidationTransaction, SignedTransaction


class Signer(Protocol):
    """Abstract interface for signing liquidation transactions."""

    @property
    def public_key(self) -> str: ...

    async def sign(self, tx: LiquidationTransaction) -> SignedTransaction: ...
