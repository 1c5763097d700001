"""Oracle feed protocol — price feed abstraction."""
from typing import Iterable, Protocol

from ..models import OraclePrice


class OracleFeed(Protocol):
    """Abstract interface for fetching asset prices."""

    async def get_price(self, asset_id: str) -> OraclePrice: ...

    async def get_prices(self, asset_ids: Iterable[str]) -> dict[str, OraclePrice]: ...
