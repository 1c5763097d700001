"""Wire configured collaborators into an engine."""
from __future__ import annotations

import importlib
import logging
from dataclasses import dataclass

from .chains.solana import MarginLedgerGateway, SolanaClient
from .config import AppConfig
from .errors import ConfigError, TransientError, with_deadline
from .interfaces.signer import Signer
from .oracles import PythOracle
from .routers import JupiterRouter
from .services import (
    AccountScanner,
    CandidateSelector,
    Engine,
    HealthCalculator,
    LiquidationExecutor,
    RouteFinder,
)

logger = logging.getLogger(__name__)


@dataclass
class Components:
    ledger: MarginLedgerGateway
    scanner: AccountScanner
    selector: CandidateSelector
    route_finder: RouteFinder


def load_signer(path: str) -> Signer:
    """Instantiate a signer from a ``package.module:factory`` path."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"Signer must be given as 'module:factory', got {path!r}")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigError(f"Cannot load signer {path!r}: {e}") from e
    signer = factory()
    logger.info("Loaded signer %s (%s)", path, signer.public_key)
    return signer


def build_components(config: AppConfig) -> Components:
    ledger = MarginLedgerGateway(SolanaClient(config.chain), config.protocol)
    calculator = HealthCalculator(
        max_price_age_seconds=config.health.max_price_age_seconds,
        conservative_pricing=config.health.conservative_pricing,
    )
    scanner = AccountScanner(
        ledger,
        PythOracle(config.pyth),
        calculator,
        fetch_concurrency=config.engine.fetch_concurrency,
        batch_size=config.engine.batch_size,
        bank_refresh_cycles=config.engine.bank_refresh_cycles,
        call_timeout=config.execution.call_timeout_seconds,
    )
    selector = CandidateSelector(own_account=config.protocol.liquidator_account)
    route_finder = RouteFinder(
        JupiterRouter(config.routing),
        max_hops=config.routing.max_hops,
        max_price_impact_bps=config.routing.max_price_impact_bps,
        call_timeout=config.execution.call_timeout_seconds,
    )
    return Components(ledger, scanner, selector, route_finder)


def build_engine(
    config: AppConfig, signer: Signer, components: Components | None = None
) -> Engine:
    components = components or build_components(config)
    executor = LiquidationExecutor(
        components.ledger,
        signer,
        program_id=config.protocol.program_id,
        liquidator_account=config.protocol.liquidator_account,
        route_finder=components.route_finder,
        max_attempts=config.execution.max_attempts,
        backoff_min=config.execution.backoff_min_seconds,
        backoff_max=config.execution.backoff_max_seconds,
        call_timeout=config.execution.call_timeout_seconds,
        dry_run=config.execution.dry_run,
    )
    return Engine(
        components.ledger,
        components.scanner,
        components.selector,
        components.route_finder,
        executor,
        interval_seconds=config.engine.scan_interval_seconds,
        execution_concurrency=config.engine.execution_concurrency,
        max_slippage_bps=config.routing.max_slippage_bps,
        min_bonus=config.engine.min_bonus,
        whitelist=config.engine.whitelist,
        blacklist=config.engine.blacklist,
        call_timeout=config.execution.call_timeout_seconds,
    )


async def ensure_ledger_reachable(ledger: MarginLedgerGateway, timeout: float) -> None:
    """Fail fast at startup when no RPC endpoint answers."""
    try:
        await with_deadline(ledger.ping(), timeout, "ping")
    except TransientError as e:
        raise ConfigError(f"Ledger gateway unreachable: {e}") from e
