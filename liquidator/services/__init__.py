"""Service modules"""
from .engine import Engine, EngineState
from .executor import ExecutionLocks, LiquidationExecutor
from .health import HealthCalculator
from .routing import RouteFinder
from .scanner import AccountScanner, CycleContext
from .selector import CandidateSelector

__all__ = [
    "AccountScanner",
    "CandidateSelector",
    "CycleContext",
    "Engine",
    "EngineState",
    "ExecutionLocks",
    "HealthCalculator",
    "LiquidationExecutor",
    "RouteFinder",
]
