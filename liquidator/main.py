#!/usr/bin/env python3
"""
Lending protocol liquidation engine
Entry point: python -m liquidator.main <command>
"""
from .cli import main

if __name__ == "__main__":
    main()
