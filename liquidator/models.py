"""Data models — all frozen (immutable)."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

INFINITE_HEALTH = Decimal("Infinity")


class MarginRequirement(str, enum.Enum):
    """Which set of bank weights a health computation uses."""

    INITIAL = "initial"
    MAINTENANCE = "maintenance"


class ExecutionOutcome(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    SIMULATION_FAILED = "simulation-failed"
    SUBMISSION_FAILED = "submission-failed"
    EXPIRED = "expired"


# ---------------------------------------------------------------------------
# Ledger state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceEntry:
    """One bank slot of a margin account, in native token units."""

    bank: str
    deposit_amount: int = 0
    borrow_amount: int = 0

    @property
    def net_amount(self) -> int:
        return self.deposit_amount - self.borrow_amount

    @property
    def is_empty(self) -> bool:
        return self.deposit_amount == 0 and self.borrow_amount == 0


@dataclass(frozen=True)
class LendingAccount:
    address: str
    owner: str
    balances: tuple[BalanceEntry, ...] = ()

    @property
    def banks(self) -> tuple[str, ...]:
        return tuple(b.bank for b in self.balances if not b.is_empty)


@dataclass(frozen=True)
class BankConfig:
    """Per-asset risk parameters of a lending bank."""

    address: str
    mint: str
    decimals: int
    oracle: str
    asset_weight_init: Decimal
    asset_weight_maint: Decimal
    liability_weight_init: Decimal
    liability_weight_maint: Decimal
    deposit_limit: int = 0
    borrow_limit: int = 0
    liquidation_discount: Decimal = Decimal("0.025")
    symbol: str = ""

    def asset_weight(self, requirement: MarginRequirement) -> Decimal:
        if requirement is MarginRequirement.INITIAL:
            return self.asset_weight_init
        return self.asset_weight_maint

    def liability_weight(self, requirement: MarginRequirement) -> Decimal:
        if requirement is MarginRequirement.INITIAL:
            return self.liability_weight_init
        return self.liability_weight_maint


@dataclass(frozen=True)
class OraclePrice:
    asset_id: str
    price: Decimal
    confidence: Decimal
    publish_time: datetime


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BankPosition:
    """Valued view of one balance entry at the time of a health computation."""

    bank: str
    mint: str
    deposit_amount: int
    borrow_amount: int
    price: Decimal
    asset_value: Decimal
    liability_value: Decimal
    weighted_asset_value: Decimal
    weighted_liability_value: Decimal


@dataclass(frozen=True)
class HealthSnapshot:
    account: str
    collateral_value: Decimal
    debt_value: Decimal
    health_ratio: Decimal
    computed_at: datetime
    requirement: MarginRequirement = MarginRequirement.MAINTENANCE
    positions: tuple[BankPosition, ...] = ()

    @property
    def is_liquidatable(self) -> bool:
        return self.health_ratio < 1

    def position(self, bank: str) -> BankPosition | None:
        for p in self.positions:
            if p.bank == bank:
                return p
        return None


@dataclass(frozen=True)
class LiquidationCandidate:
    account: str
    health_ratio: Decimal
    asset_bank: str
    liability_bank: str
    asset_amount: int
    liability_amount: int
    estimated_bonus: Decimal


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RouteLeg:
    """Single hop of a swap route."""

    amm: str
    input_mint: str
    output_mint: str
    in_amount: int
    out_amount: int
    label: str = ""


@dataclass(frozen=True)
class SwapRoute:
    input_mint: str
    in_amount: int
    output_mint: str
    out_amount: int
    min_out_amount: int
    expires_at: datetime
    price_impact_bps: Decimal = Decimal(0)
    legs: tuple[RouteLeg, ...] = ()
    slippage_bps: int = 0

    @property
    def hop_count(self) -> int:
        return len(self.legs)

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Instruction:
    program: str
    name: str
    accounts: tuple[str, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LiquidationTransaction:
    fee_payer: str
    liquidatee: str
    instructions: tuple[Instruction, ...]
    route: SwapRoute


@dataclass(frozen=True)
class SignedTransaction:
    signature: str
    payload: str
    transaction: LiquidationTransaction


@dataclass(frozen=True)
class SimulationResult:
    ok: bool
    error: str | None = None
    logs: tuple[str, ...] = ()
    units_consumed: int = 0


@dataclass(frozen=True)
class SubmissionReceipt:
    signature: str
    slot: int


@dataclass(frozen=True)
class ExecutionResult:
    outcome: ExecutionOutcome
    account: str
    detail: str = ""
    signature: str | None = None
    slot: int | None = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome is ExecutionOutcome.SUCCESS


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CycleMetrics:
    cycle: int = 0
    accounts_scanned: int = 0
    scan_failures: int = 0
    candidates_found: int = 0
    executions_attempted: int = 0
    executions_succeeded: int = 0
    executions_failed: int = 0
    executions_skipped: int = 0
    deferred: int = 0
    no_route: int = 0
