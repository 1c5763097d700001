"""Route acquisition and validation on top of the swap-routing service."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from ..errors import NoRouteError, with_deadline
from ..interfaces.swap_router import SwapRoutingService
from ..models import SwapRoute

logger = logging.getLogger(__name__)

BPS = 10_000


def min_out_for(out_amount: int, slippage_bps: int) -> int:
    """Lowest acceptable output after ``slippage_bps`` of slippage (floored)."""
    return out_amount * (BPS - slippage_bps) // BPS


class RouteFinder:
    """Fetches quotes and keeps only routes inside the configured risk bounds."""

    def __init__(
        self,
        router: SwapRoutingService,
        max_hops: int = 3,
        max_price_impact_bps: int = 250,
        call_timeout: float = 15.0,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._router = router
        self._max_hops = max_hops
        self._max_price_impact_bps = max_price_impact_bps
        self._call_timeout = call_timeout
        self._clock = clock

    def _rejection(self, route: SwapRoute, now: datetime) -> str | None:
        if route.is_expired(now):
            return "expired"
        if route.out_amount <= 0:
            return "zero output"
        if route.hop_count > self._max_hops:
            return f"{route.hop_count} hops > {self._max_hops}"
        if route.price_impact_bps > self._max_price_impact_bps:
            return f"price impact {route.price_impact_bps}bps > {self._max_price_impact_bps}bps"
        return None

    async def find_route(
        self,
        input_asset: str,
        input_amount: int,
        output_asset: str,
        max_slippage_bps: int,
    ) -> SwapRoute:
        """Best valid route converting ``input_amount`` of ``input_asset``.

        The minimum output is always recomputed from ``max_slippage_bps`` and
        never loosened to whatever the service suggested.

        Raises:
            NoRouteError: no quote passes the hop, impact and expiry checks.
        """
        if input_amount <= 0:
            raise NoRouteError(f"Nothing to swap for {input_asset}")

        routes = await with_deadline(
            self._router.quote(input_asset, input_amount, output_asset, max_slippage_bps),
            self._call_timeout,
            "quote",
        )

        now = self._clock()
        valid: list[SwapRoute] = []
        for route in routes:
            reason = self._rejection(route, now)
            if reason:
                logger.debug("Rejected route %s -> %s: %s", input_asset, output_asset, reason)
                continue
            bound = min_out_for(route.out_amount, max_slippage_bps)
            valid.append(
                replace(
                    route,
                    min_out_amount=max(route.min_out_amount, bound),
                    slippage_bps=max_slippage_bps,
                )
            )

        if not valid:
            raise NoRouteError(
                f"No viable route {input_asset} -> {output_asset} "
                f"({len(routes)} quote(s) rejected)"
            )

        best = max(valid, key=lambda r: (r.out_amount, -r.hop_count))
        logger.info(
            "Route %s -> %s: in=%d out=%d min_out=%d hops=%d impact=%sbps",
            input_asset,
            output_asset,
            best.in_amount,
            best.out_amount,
            best.min_out_amount,
            best.hop_count,
            best.price_impact_bps,
        )
        return best

    async def refresh(self, route: SwapRoute) -> SwapRoute:
        """Re-quote an expired route with the same pair, amount and slippage."""
        return await self.find_route(
            route.input_mint, route.in_amount, route.output_mint, route.slippage_bps
        )
