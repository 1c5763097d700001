"""Swap routing services."""
from .jupiter import JupiterRouter

__all__ = ["JupiterRouter"]
