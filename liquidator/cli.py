"""Command-line interface for the liquidation engine."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from dataclasses import replace

from .bootstrap import (
    build_components,
    build_engine,
    ensure_ledger_reachable,
    load_signer,
)
from .config import AppConfig, load_config
from .errors import ConfigError
from .logging_setup import configure_logging
from .services.engine import find_candidates

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="liquidator",
        description="Lending protocol liquidation engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("check-config", help="Validate config and ledger connectivity")
    sub.add_parser("scan", help="Single scan + selection pass, no execution")

    run_parser = sub.add_parser("run", help="Continuous liquidation loop")
    run_parser.add_argument(
        "interval",
        nargs="?",
        type=float,
        default=None,
        help="Cycle interval in seconds (overrides config)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Simulate liquidations but never submit them",
    )

    return parser


async def _check_config(config: AppConfig) -> None:
    components = build_components(config)
    await ensure_ledger_reachable(components.ledger, config.execution.call_timeout_seconds)
    print(f"Configuration OK ({config.protocol.environment})")


async def _scan(config: AppConfig) -> None:
    components = build_components(config)
    await ensure_ledger_reachable(components.ledger, config.execution.call_timeout_seconds)

    whitelist = frozenset(config.engine.whitelist)
    blacklist = frozenset(config.engine.blacklist)

    _context, candidates = await find_candidates(
        components.ledger,
        components.scanner,
        components.selector,
        1,
        whitelist,
        blacklist,
        config.engine.min_bonus,
        call_timeout=config.execution.call_timeout_seconds,
    )
    print(
        f"Scanned {components.scanner.stats.accounts} accounts, "
        f"{len(components.scanner.failures)} skipped, {len(candidates)} candidate(s)"
    )
    for c in candidates:
        print(
            f"  {c.account}  health={c.health_ratio:.4f}  "
            f"bonus=${c.estimated_bonus:,.2f}  "
            f"seize {c.asset_amount} from {c.asset_bank}  "
            f"repay {c.liability_amount} to {c.liability_bank}"
        )


async def _run(config: AppConfig) -> None:
    signer = load_signer(config.execution.signer)
    components = build_components(config)
    await ensure_ledger_reachable(components.ledger, config.execution.call_timeout_seconds)

    engine = build_engine(config, signer, components)
    await engine.start()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(engine.stop()))
        except NotImplementedError:
            pass

    try:
        await engine.wait()
    finally:
        await engine.stop()


async def _dispatch(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    if args.command == "check-config":
        await _check_config(config)
    elif args.command == "scan":
        await _scan(config)
    elif args.command == "run":
        if args.interval is not None:
            config = replace(
                config, engine=replace(config.engine, scan_interval_seconds=args.interval)
            )
        if args.dry_run:
            config = replace(config, execution=replace(config.execution, dry_run=True))
        await _run(config)
    else:
        build_parser().print_help()
        sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_dispatch(args))
    except (ConfigError, ValueError, FileNotFoundError) as e:
        logger.critical("Startup failed: %s", e)
        sys.exit(1)
