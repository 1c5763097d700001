"""Pyth Network price oracle service."""
from __future__ import annotations

import logging
import ssl
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable

import aiohttp
import certifi

from ..config import PythConfig
from ..errors import MissingDataError
from ..models import OraclePrice

logger = logging.getLogger(__name__)


def _normalize(feed_id: str) -> str:
    return feed_id.lower().removeprefix("0x")


def parse_price_update(item: dict[str, Any], asset_id: str) -> OraclePrice:
    """Convert one Hermes ``parsed`` entry into an :class:`OraclePrice`.

    Price and confidence are fixed-point integers scaled by ``10**expo``.
    """
    price_data = item.get("price", {})
    expo = int(price_data.get("expo", 0))
    return OraclePrice(
        asset_id=asset_id,
        price=Decimal(int(price_data.get("price", 0))).scaleb(expo),
        confidence=Decimal(int(price_data.get("conf", 0))).scaleb(expo),
        publish_time=datetime.fromtimestamp(
            int(price_data.get("publish_time", 0)), tz=timezone.utc
        ),
    )


class PythOracle:
    """Fetch prices from the Pyth Hermes service.

    Banks reference their oracle by key; ``feeds`` maps a key to its Hermes
    feed id when the two differ.
    """

    def __init__(self, config: PythConfig) -> None:
        self.hermes_url = config.hermes_url
        self.timeout = config.timeout
        self.price_feeds = dict(config.feeds)

    async def get_price(self, asset_id: str) -> OraclePrice:
        prices = await self.get_prices([asset_id])
        if asset_id not in prices:
            raise MissingDataError(f"No Pyth price for {asset_id}")
        return prices[asset_id]

    async def get_prices(self, asset_ids: Iterable[str]) -> dict[str, OraclePrice]:
        """Fetch the latest price of every requested oracle key.

        Keys Hermes does not answer for are absent from the result.
        """
        prices: dict[str, OraclePrice] = {}

        # Create reverse mapping from feed ID to oracle keys
        id_to_assets: dict[str, list[str]] = {}
        for asset in asset_ids:
            feed_id = _normalize(self.price_feeds.get(asset, asset))
            id_to_assets.setdefault(feed_id, []).append(asset)

        if not id_to_assets:
            return prices

        params = [("ids[]", fid) for fid in sorted(id_to_assets)]

        ssl_context = ssl.create_default_context(cafile=certifi.where())
        connector = aiohttp.TCPConnector(ssl=ssl_context)

        try:
            async with aiohttp.ClientSession(connector=connector) as session:
                async with session.get(
                    self.hermes_url,
                    params=params,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    if response.status != 200:
                        logger.error(
                            "Error fetching prices from Pyth: HTTP %s", response.status
                        )
                        return prices

                    data = await response.json()
                    for item in data.get("parsed", []):
                        feed_id = _normalize(item.get("id", ""))
                        for asset in id_to_assets.get(feed_id, []):
                            prices[asset] = parse_price_update(item, asset)

        except Exception as e:
            logger.error("Error fetching prices from Pyth: %s", e)
            return prices

        logger.debug("Fetched %d/%d prices from Pyth", len(prices), len(id_to_assets))
        return prices
