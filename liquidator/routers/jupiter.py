"""Jupiter swap aggregator quote client."""
from __future__ import annotations

import logging
import ssl
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable

import aiohttp
import certifi

from ..config import RoutingConfig
from ..models import RouteLeg, SwapRoute

logger = logging.getLogger(__name__)


def parse_quote(
    quote: dict[str, Any], expires_at: datetime, slippage_bps: int
) -> SwapRoute:
    """Convert a quote response into a :class:`SwapRoute`.

    ``priceImpactPct`` is a fraction (``"0.0125"`` is 1.25%).
    """
    legs = []
    for step in quote.get("routePlan", []):
        info = step.get("swapInfo", {})
        legs.append(
            RouteLeg(
                amm=info.get("ammKey", ""),
                label=info.get("label", ""),
                input_mint=info.get("inputMint", ""),
                output_mint=info.get("outputMint", ""),
                in_amount=int(info.get("inAmount", 0)),
                out_amount=int(info.get("outAmount", 0)),
            )
        )

    return SwapRoute(
        input_mint=quote["inputMint"],
        in_amount=int(quote["inAmount"]),
        output_mint=quote["outputMint"],
        out_amount=int(quote["outAmount"]),
        min_out_amount=int(quote.get("otherAmountThreshold", 0)),
        expires_at=expires_at,
        price_impact_bps=abs(Decimal(str(quote.get("priceImpactPct", "0")))) * 10_000,
        legs=tuple(legs),
        slippage_bps=slippage_bps,
    )


class JupiterRouter:
    """Quote collateral → debt swaps through Jupiter.

    Quotes are only trusted for ``route_ttl_seconds``; each route carries
    its own expiry.
    """

    def __init__(
        self,
        config: RoutingConfig,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.quote_url = config.quote_url
        self.route_ttl = timedelta(seconds=config.route_ttl_seconds)
        self.restrict_intermediate_tokens = config.restrict_intermediate_tokens
        self.excluded_amms = tuple(config.excluded_amms)
        self._clock = clock

    def _params(
        self, input_mint: str, amount: int, output_mint: str, slippage_bps: int
    ) -> dict[str, str]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
            "swapMode": "ExactIn",
            "restrictIntermediateTokens": str(self.restrict_intermediate_tokens).lower(),
        }
        if self.excluded_amms:
            params["excludeDexes"] = ",".join(self.excluded_amms)
        return params

    async def quote(
        self, input_mint: str, amount: int, output_mint: str, slippage_bps: int
    ) -> list[SwapRoute]:
        """Fetch the best route for the pair; an empty list when none exists."""
        params = self._params(input_mint, amount, output_mint, slippage_bps)

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(self.quote_url, params=params) as response:
                    if response.status != 200:
                        body = await response.text()
                        logger.warning(
                            "No Jupiter quote %s -> %s: HTTP %s %s",
                            input_mint,
                            output_mint,
                            response.status,
                            body[:200],
                        )
                        return []
                    data = await response.json()
        except Exception as e:
            logger.error("Error fetching quote from Jupiter: %s", e)
            return []

        expires_at = self._clock() + self.route_ttl
        try:
            return [parse_quote(data, expires_at, slippage_bps)]
        except (KeyError, ValueError, ArithmeticError) as e:
            logger.error("Malformed Jupiter quote: %s", e)
            return []
