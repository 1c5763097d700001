"""Configuration loader — reads config.yaml, interpolates env vars, validates."""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Frozen config dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EngineConfig:
    scan_interval_seconds: float = 10.0
    fetch_concurrency: int = 4
    batch_size: int = 100
    execution_concurrency: int = 2
    bank_refresh_cycles: int = 30
    min_bonus: Decimal = Decimal("0")
    whitelist: tuple[str, ...] = ()
    blacklist: tuple[str, ...] = ()


@dataclass(frozen=True)
class HealthConfig:
    max_price_age_seconds: float = 60.0
    conservative_pricing: bool = False


@dataclass(frozen=True)
class RoutingConfig:
    quote_url: str = "https://quote-api.jup.ag/v6/quote"
    max_slippage_bps: int = 100
    max_hops: int = 3
    max_price_impact_bps: int = 250
    route_ttl_seconds: float = 5.0
    restrict_intermediate_tokens: bool = True
    excluded_amms: tuple[str, ...] = ()


@dataclass(frozen=True)
class ExecutionConfig:
    max_attempts: int = 3
    backoff_min_seconds: float = 0.5
    backoff_max_seconds: float = 4.0
    call_timeout_seconds: float = 15.0
    dry_run: bool = False
    signer: str = ""


@dataclass(frozen=True)
class ChainConfig:
    rpc_endpoints: tuple[str, ...] = ()
    rpc_timeout: int = 30
    commitment: str = "confirmed"


@dataclass(frozen=True)
class ProtocolConfig:
    environment: str = "production"
    program_id: str = ""
    group: str = ""
    liquidator_account: str = ""


@dataclass(frozen=True)
class PythConfig:
    hermes_url: str = "https://hermes.pyth.network/v2/updates/price/latest"
    timeout: int = 10
    feeds: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class AppConfig:
    engine: EngineConfig = field(default_factory=EngineConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    chain: ChainConfig = field(default_factory=ChainConfig)
    protocol: ProtocolConfig = field(default_factory=ProtocolConfig)
    pyth: PythConfig = field(default_factory=PythConfig)


# ---------------------------------------------------------------------------
# Env interpolation
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)}")


def _interpolate_env(value: Any) -> Any:
    """Recursively replace ${VAR} references with environment variable values."""
    if isinstance(value, str):
        return _ENV_VAR_RE.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(item) for item in value]
    return value


def _as_id_tuple(value: Any) -> tuple[str, ...]:
    """Accept a YAML list or a comma-separated string of account ids."""
    if value is None:
        return ()
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = [str(v) for v in value]
    return tuple(item.strip() for item in items if item.strip())


# ---------------------------------------------------------------------------
# YAML → dataclass builders
# ---------------------------------------------------------------------------


def _build_engine(raw: dict[str, Any]) -> EngineConfig:
    return EngineConfig(
        scan_interval_seconds=float(raw.get("scan_interval_seconds", 10.0)),
        fetch_concurrency=int(raw.get("fetch_concurrency", 4)),
        batch_size=int(raw.get("batch_size", 100)),
        execution_concurrency=int(raw.get("execution_concurrency", 2)),
        bank_refresh_cycles=int(raw.get("bank_refresh_cycles", 30)),
        min_bonus=Decimal(str(raw.get("min_bonus", "0"))),
        whitelist=_as_id_tuple(raw.get("whitelist")),
        blacklist=_as_id_tuple(raw.get("blacklist")),
    )


def _build_health(raw: dict[str, Any]) -> HealthConfig:
    return HealthConfig(
        max_price_age_seconds=float(raw.get("max_price_age_seconds", 60.0)),
        conservative_pricing=bool(raw.get("conservative_pricing", False)),
    )


def _build_routing(raw: dict[str, Any]) -> RoutingConfig:
    return RoutingConfig(
        quote_url=raw.get("quote_url", RoutingConfig.quote_url),
        max_slippage_bps=int(raw.get("max_slippage_bps", 100)),
        max_hops=int(raw.get("max_hops", 3)),
        max_price_impact_bps=int(raw.get("max_price_impact_bps", 250)),
        route_ttl_seconds=float(raw.get("route_ttl_seconds", 5.0)),
        restrict_intermediate_tokens=bool(
            raw.get("restrict_intermediate_tokens", True)
        ),
        excluded_amms=_as_id_tuple(raw.get("excluded_amms")),
    )


def _build_execution(raw: dict[str, Any]) -> ExecutionConfig:
    return ExecutionConfig(
        max_attempts=int(raw.get("max_attempts", 3)),
        backoff_min_seconds=float(raw.get("backoff_min_seconds", 0.5)),
        backoff_max_seconds=float(raw.get("backoff_max_seconds", 4.0)),
        call_timeout_seconds=float(raw.get("call_timeout_seconds", 15.0)),
        dry_run=bool(raw.get("dry_run", False)),
        signer=raw.get("signer", "") or "",
    )


def _build_chain(raw: dict[str, Any]) -> ChainConfig:
    return ChainConfig(
        rpc_endpoints=tuple(raw.get("rpc_endpoints", [])),
        rpc_timeout=int(raw.get("rpc_timeout", 30)),
        commitment=raw.get("commitment", "confirmed"),
    )


def _build_protocol(raw: dict[str, Any]) -> ProtocolConfig:
    """Resolve the active environment's program/group ids.

    ``environments`` maps a name (``production``, ``staging``...) to its ids;
    top-level ``program_id``/``group`` override the selected entry.
    """
    environment = raw.get("environment", "production") or "production"
    env_raw = raw.get("environments", {}).get(environment, {})
    return ProtocolConfig(
        environment=environment,
        program_id=raw.get("program_id") or env_raw.get("program_id", ""),
        group=raw.get("group") or env_raw.get("group", ""),
        liquidator_account=raw.get("liquidator_account", ""),
    )


def _build_pyth(raw: dict[str, Any]) -> PythConfig:
    return PythConfig(
        hermes_url=raw.get("hermes_url", PythConfig.hermes_url),
        timeout=int(raw.get("timeout", 10)),
        feeds=dict(raw.get("feeds", {})),
    )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate application configuration from YAML + .env.

    Args:
        config_path: Path to config.yaml. Defaults to ``config.yaml`` in the
            project root (one level up from this package).
    """
    load_dotenv()

    if config_path is None:
        config_path = Path(__file__).resolve().parent.parent / "config.yaml"
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    raw = _interpolate_env(raw)

    cfg = AppConfig(
        engine=_build_engine(raw.get("engine", {})),
        health=_build_health(raw.get("health", {})),
        routing=_build_routing(raw.get("routing", {})),
        execution=_build_execution(raw.get("execution", {})),
        chain=_build_chain(raw.get("chain", {})),
        protocol=_build_protocol(raw.get("protocol", {})),
        pyth=_build_pyth(raw.get("pyth", {})),
    )

    _validate(cfg)
    logger.info(
        "Configuration loaded from %s (environment: %s)",
        config_path,
        cfg.protocol.environment,
    )
    return cfg


def _validate(cfg: AppConfig) -> None:
    """Raise on invalid configuration."""
    if not cfg.chain.rpc_endpoints:
        raise ValueError("At least one RPC endpoint must be configured")
    if not cfg.protocol.program_id:
        raise ValueError(
            f"No program_id for environment '{cfg.protocol.environment}'"
        )
    if not cfg.protocol.group:
        raise ValueError(f"No group for environment '{cfg.protocol.environment}'")
    if not cfg.protocol.liquidator_account:
        raise ValueError("liquidator_account must be set")

    if cfg.engine.fetch_concurrency < 1 or cfg.engine.execution_concurrency < 1:
        raise ValueError("Concurrency limits must be at least 1")
    if cfg.engine.batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    if cfg.engine.bank_refresh_cycles < 1:
        raise ValueError("bank_refresh_cycles must be at least 1")
    if not 0 <= cfg.routing.max_slippage_bps < 10_000:
        raise ValueError("max_slippage_bps must be within [0, 10000)")
    if cfg.routing.max_hops < 1:
        raise ValueError("max_hops must be at least 1")
    if cfg.execution.max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")
    if cfg.health.max_price_age_seconds <= 0:
        raise ValueError("max_price_age_seconds must be positive")

    overlap = set(cfg.engine.whitelist) & set(cfg.engine.blacklist)
    if overlap:
        logger.warning(
            "%d account(s) are both whitelisted and blacklisted; blacklist wins",
            len(overlap),
        )
