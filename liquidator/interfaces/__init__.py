"""Protocol interfaces for the liquidation engine's collaborators."""
from .ledger import LedgerGateway
from .oracle import OracleFeed
from .signer import Signer
from .swap_router import SwapRoutingService

__all__ = ["LedgerGateway", "OracleFeed", "Signer", "SwapRoutingService"]
