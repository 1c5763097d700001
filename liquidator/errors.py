"""Exception taxonomy for the liquidation engine."""
from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class LiquidatorError(Exception):
    """Base class for all engine errors."""


class ConfigError(LiquidatorError):
    """Startup configuration is unusable. Fatal."""


class StaleDataError(LiquidatorError):
    """An oracle price is older than the staleness bound."""

    def __init__(self, asset_id: str, age_seconds: float, max_age_seconds: float) -> None:
        super().__init__(
            f"Price for {asset_id} is {age_seconds:.0f}s old "
            f"(bound {max_age_seconds:.0f}s)"
        )
        self.asset_id = asset_id
        self.age_seconds = age_seconds
        self.max_age_seconds = max_age_seconds


class MissingDataError(LiquidatorError):
    """A bank config or price referenced by an account is not available."""


class NoRouteError(LiquidatorError):
    """No swap route satisfies the slippage, hop and impact bounds."""


class SimulationFailedError(LiquidatorError):
    """Simulation rejected the transaction; ledger state moved since selection."""


class TransientError(LiquidatorError):
    """Network or RPC fault that is safe to retry."""


class LedgerError(TransientError):
    pass


class SubmissionError(TransientError):
    pass


class DeadlineExceeded(TransientError):
    pass


async def with_deadline(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """Await ``awaitable`` but give up after ``seconds``.

    A timeout surfaces as :class:`DeadlineExceeded` so callers treat it as a
    transient fault rather than account state.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise DeadlineExceeded(f"{operation} exceeded {seconds:.1f}s deadline") from e
