"""Liquidation engine for an on-chain lending protocol."""

__version__ = "0.1.0"
