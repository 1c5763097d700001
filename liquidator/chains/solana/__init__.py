"""Solana RPC client and lending-program ledger gateway."""
from .client import RpcError, SolanaClient
from .gateway import MarginLedgerGateway

__all__ = ["MarginLedgerGateway", "RpcError", "SolanaClient"]
