"""Swap routing protocol — quote discovery for collateral → debt swaps."""
from typing import Protocol

from ..models import SwapRoute


class SwapRoutingService(Protocol):
    """Abstract interface for an external swap aggregator."""

    async def quote(
        self, input_mint: str, amount: int, output_mint: str, slippage_bps: int
    ) -> list[SwapRoute]: ...
