"""Shared test fixtures, sample data and in-memory collaborators."""
from __future__ import annotations

import asyncio
import textwrap
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Sequence

import pytest

from liquidator.config import (
    AppConfig,
    ChainConfig,
    EngineConfig,
    ExecutionConfig,
    ProtocolConfig,
    PythConfig,
    RoutingConfig,
)
from liquidator.errors import LedgerError, MissingDataError
from liquidator.models import (
    BalanceEntry,
    BankConfig,
    LendingAccount,
    LiquidationTransaction,
    OraclePrice,
    RouteLeg,
    SignedTransaction,
    SimulationResult,
    SubmissionReceipt,
    SwapRoute,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

PROGRAM_ID = "MFv2hWf31Z9kbCa1snEPYctwafyhdvnV7FZnsebVacA"
GROUP = "4qp6Fx6tnZkY5Wropq9wUYgtFxXKwE6viZxFHg3rdAG8"
LIQUIDATOR_ACCOUNT = "LiqAcct111"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Banks, prices, accounts
# ---------------------------------------------------------------------------


@pytest.fixture()
def usdc_bank() -> BankConfig:
    return BankConfig(
        address="bank-usdc",
        mint="mint-usdc",
        decimals=6,
        oracle="oracle-usdc",
        asset_weight_init=Decimal("1"),
        asset_weight_maint=Decimal("1"),
        liability_weight_init=Decimal("1"),
        liability_weight_maint=Decimal("1"),
        liquidation_discount=Decimal("0.025"),
        symbol="USDC",
    )


@pytest.fixture()
def usdt_bank() -> BankConfig:
    return BankConfig(
        address="bank-usdt",
        mint="mint-usdt",
        decimals=6,
        oracle="oracle-usdt",
        asset_weight_init=Decimal("1"),
        asset_weight_maint=Decimal("1"),
        liability_weight_init=Decimal("1"),
        liability_weight_maint=Decimal("1"),
        liquidation_discount=Decimal("0.025"),
        symbol="USDT",
    )


@pytest.fixture()
def sol_bank() -> BankConfig:
    return BankConfig(
        address="bank-sol",
        mint="mint-sol",
        decimals=9,
        oracle="oracle-sol",
        asset_weight_init=Decimal("0.8"),
        asset_weight_maint=Decimal("0.9"),
        liability_weight_init=Decimal("1.2"),
        liability_weight_maint=Decimal("1.1"),
        liquidation_discount=Decimal("0.05"),
        symbol="SOL",
    )


@pytest.fixture()
def banks(
    usdc_bank: BankConfig, usdt_bank: BankConfig, sol_bank: BankConfig
) -> dict[str, BankConfig]:
    return {b.address: b for b in (usdc_bank, usdt_bank, sol_bank)}


@pytest.fixture()
def prices() -> dict[str, OraclePrice]:
    return {
        "oracle-usdc": OraclePrice("oracle-usdc", Decimal("1"), Decimal("0.001"), NOW),
        "oracle-usdt": OraclePrice("oracle-usdt", Decimal("1"), Decimal("0.001"), NOW),
        "oracle-sol": OraclePrice("oracle-sol", Decimal("100"), Decimal("0.5"), NOW),
    }


def usd(amount: str | int) -> int:
    """Native units of a 6-decimal stablecoin."""
    return int(Decimal(amount) * 10**6)


def _make_account(
    address: str, *entries: tuple[str, int, int], owner: str = "owner"
) -> LendingAccount:
    return LendingAccount(
        address=address,
        owner=owner,
        balances=tuple(BalanceEntry(bank, dep, bor) for bank, dep, bor in entries),
    )


@pytest.fixture()
def healthy_account() -> LendingAccount:
    # 150 collateral / 100 debt
    return _make_account(
        "acct-healthy", ("bank-usdc", usd(150), 0), ("bank-usdt", 0, usd(100))
    )


@pytest.fixture()
def underwater_account() -> LendingAccount:
    # 80 collateral / 100 debt
    return _make_account(
        "acct-underwater", ("bank-usdc", usd(80), 0), ("bank-usdt", 0, usd(100))
    )


@pytest.fixture()
def marginal_account() -> LendingAccount:
    # 95 collateral / 100 debt
    return _make_account(
        "acct-marginal", ("bank-usdc", usd(95), 0), ("bank-usdt", 0, usd(100))
    )


@pytest.fixture()
def make_account():
    return _make_account


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _make_route(
    in_amount: int = usd(80),
    out_amount: int = usd(79),
    expires_at: datetime = NOW + timedelta(seconds=5),
    hops: int = 1,
    price_impact_bps: str = "10",
    min_out_amount: int | None = None,
    input_mint: str = "mint-usdc",
    output_mint: str = "mint-usdt",
) -> SwapRoute:
    legs = tuple(
        RouteLeg(
            amm=f"amm-{i}",
            input_mint=input_mint if i == 0 else f"mint-mid-{i}",
            output_mint=output_mint if i == hops - 1 else f"mint-mid-{i + 1}",
            in_amount=in_amount,
            out_amount=out_amount,
            label=f"Pool {i}",
        )
        for i in range(hops)
    )
    return SwapRoute(
        input_mint=input_mint,
        in_amount=in_amount,
        output_mint=output_mint,
        out_amount=out_amount,
        min_out_amount=out_amount if min_out_amount is None else min_out_amount,
        expires_at=expires_at,
        price_impact_bps=Decimal(price_impact_bps),
        legs=legs,
    )


@pytest.fixture()
def make_route():
    return _make_route


# ---------------------------------------------------------------------------
# In-memory collaborators
# ---------------------------------------------------------------------------


class FakeLedger:
    """Ledger gateway backed by dicts; records every call."""

    def __init__(
        self,
        accounts: Iterable[LendingAccount] = (),
        banks: Iterable[BankConfig] = (),
    ) -> None:
        self.accounts = {a.address: a for a in accounts}
        self.banks = list(banks)
        self.failing_ids: set[str] = set()
        self.get_accounts_calls: list[list[str]] = []
        self.bank_calls = 0
        self.simulation = SimulationResult(ok=True, units_consumed=120_000)
        self.simulations: list[SignedTransaction] = []
        self.submissions: list[SignedTransaction] = []
        self.submit_errors: list[Exception] = []
        self.submit_gate: asyncio.Event | None = None

    async def get_accounts(self, ids: Sequence[str]) -> list[LendingAccount]:
        ids = list(ids)
        self.get_accounts_calls.append(ids)
        if self.failing_ids.intersection(ids):
            raise LedgerError("getMultipleAccounts: node unavailable")
        return [self.accounts[i] for i in ids if i in self.accounts]

    async def get_bank_configs(
        self, ids: Sequence[str] | None = None
    ) -> list[BankConfig]:
        self.bank_calls += 1
        if ids is None:
            return list(self.banks)
        return [b for b in self.banks if b.address in ids]

    async def list_account_ids(self) -> list[str]:
        return list(self.accounts)

    async def simulate_transaction(self, tx: SignedTransaction) -> SimulationResult:
        self.simulations.append(tx)
        return self.simulation

    async def submit_transaction(self, tx: SignedTransaction) -> SubmissionReceipt:
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        self.submissions.append(tx)
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        return SubmissionReceipt(signature=tx.signature, slot=42)

    async def ping(self) -> None:
        return None


class FakeOracle:
    def __init__(self, prices: dict[str, OraclePrice] | None = None) -> None:
        self.prices = dict(prices or {})
        self.calls: list[list[str]] = []

    async def get_price(self, asset_id: str) -> OraclePrice:
        if asset_id not in self.prices:
            raise MissingDataError(asset_id)
        return self.prices[asset_id]

    async def get_prices(self, asset_ids: Iterable[str]) -> dict[str, OraclePrice]:
        ids = list(asset_ids)
        self.calls.append(ids)
        return {i: self.prices[i] for i in ids if i in self.prices}


class FakeRouter:
    def __init__(self, routes: Iterable[SwapRoute] = ()) -> None:
        self.routes = list(routes)
        self.calls: list[tuple[str, int, str, int]] = []

    async def quote(
        self, input_mint: str, amount: int, output_mint: str, slippage_bps: int
    ) -> list[SwapRoute]:
        self.calls.append((input_mint, amount, output_mint, slippage_bps))
        return list(self.routes)


class FakeSigner:
    public_key = "LiqWallet111"

    def __init__(self) -> None:
        self.signed: list[LiquidationTransaction] = []

    async def sign(self, tx: LiquidationTransaction) -> SignedTransaction:
        self.signed.append(tx)
        return SignedTransaction(
            signature=f"sig-{tx.liquidatee}-{len(self.signed)}",
            payload="AQID",
            transaction=tx,
        )


@pytest.fixture()
def fake_ledger_cls() -> type[FakeLedger]:
    return FakeLedger


@pytest.fixture()
def ledger(
    banks: dict[str, BankConfig],
    healthy_account: LendingAccount,
    underwater_account: LendingAccount,
    marginal_account: LendingAccount,
) -> FakeLedger:
    return FakeLedger(
        accounts=(healthy_account, underwater_account, marginal_account),
        banks=banks.values(),
    )


@pytest.fixture()
def oracle(prices: dict[str, OraclePrice]) -> FakeOracle:
    return FakeOracle(prices)


@pytest.fixture()
def router() -> FakeRouter:
    return FakeRouter([_make_route()])


@pytest.fixture()
def signer() -> FakeSigner:
    return FakeSigner()


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def sample_app_config() -> AppConfig:
    return AppConfig(
        engine=EngineConfig(scan_interval_seconds=5, whitelist=(), blacklist=("acct-bad",)),
        routing=RoutingConfig(quote_url="https://quote.example.com/v6/quote"),
        execution=ExecutionConfig(),
        chain=ChainConfig(rpc_endpoints=("https://rpc1.example.com",), rpc_timeout=5),
        protocol=ProtocolConfig(
            environment="production",
            program_id=PROGRAM_ID,
            group=GROUP,
            liquidator_account=LIQUIDATOR_ACCOUNT,
        ),
        pyth=PythConfig(hermes_url="https://hermes.example.com"),
    )


SAMPLE_YAML = textwrap.dedent(f"""\
    engine:
      scan_interval_seconds: 5
      fetch_concurrency: 2
      batch_size: 50
      execution_concurrency: 3
      bank_refresh_cycles: 10
      min_bonus: "0.5"
      whitelist: ""
      blacklist: [acct-bad]
    health:
      max_price_age_seconds: 30
      conservative_pricing: true
    routing:
      quote_url: "https://quote.example.com/v6/quote"
      max_slippage_bps: 50
      max_hops: 2
      max_price_impact_bps: 100
      route_ttl_seconds: 4
      excluded_amms: [GooseFX]
    execution:
      max_attempts: 4
      backoff_min_seconds: 0.1
      backoff_max_seconds: 1
      call_timeout_seconds: 5
    chain:
      rpc_endpoints: ["https://rpc.example.com"]
      rpc_timeout: 10
    protocol:
      environment: production
      liquidator_account: "{LIQUIDATOR_ACCOUNT}"
      environments:
        production:
          program_id: "{PROGRAM_ID}"
          group: "{GROUP}"
        staging:
          program_id: "stag111"
          group: "staggroup111"
    pyth:
      hermes_url: "https://hermes.example.com"
      feeds: {{oracle-sol: "0xEF0D"}}
""")


@pytest.fixture()
def sample_yaml_path(tmp_path: Path) -> Path:
    cfg_file = tmp_path / "config.yaml"
    cfg_file.write_text(SAMPLE_YAML)
    return cfg_file
