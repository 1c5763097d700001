"""Account scanning — batched ledger reads feeding health evaluation."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import AsyncIterator, Callable, Iterable, Mapping, Sequence

from ..errors import MissingDataError, StaleDataError, with_deadline
from ..interfaces.ledger import LedgerGateway
from ..interfaces.oracle import OracleFeed
from ..models import BankConfig, HealthSnapshot, LendingAccount, OraclePrice
from .health import HealthCalculator

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class CycleContext:
    """Bank and price snapshot shared read-only by every evaluation of a cycle."""

    cycle: int
    banks: Mapping[str, BankConfig]
    prices: Mapping[str, OraclePrice]
    fetched_at: datetime


@dataclass(frozen=True)
class ScanFailure:
    account: str
    reason: str
    stale: bool = False


@dataclass
class ScanStats:
    accounts: int = 0
    failures: list[ScanFailure] = field(default_factory=list)


class AccountScanner:
    """Refreshes tracked accounts and yields their health snapshots."""

    def __init__(
        self,
        ledger: LedgerGateway,
        oracle: OracleFeed,
        calculator: HealthCalculator,
        fetch_concurrency: int = 4,
        batch_size: int = 100,
        bank_refresh_cycles: int = 30,
        call_timeout: float = 15.0,
        clock: Clock = utc_now,
    ) -> None:
        self._ledger = ledger
        self._oracle = oracle
        self._calculator = calculator
        self._fetch_concurrency = fetch_concurrency
        self._batch_size = batch_size
        self._bank_refresh_cycles = bank_refresh_cycles
        self._call_timeout = call_timeout
        self._clock = clock

        self._banks: Mapping[str, BankConfig] | None = None
        self._banks_cycle = 0
        self.stats = ScanStats()

    @property
    def failures(self) -> list[ScanFailure]:
        return self.stats.failures

    # ------------------------------------------------------------------
    # Cycle snapshot
    # ------------------------------------------------------------------

    async def prepare_cycle(self, cycle: int) -> CycleContext:
        """Fetch bank configs (every N cycles) and prices (every cycle).

        Errors propagate: a cycle without banks or prices cannot evaluate
        anything, so the caller skips the whole cycle.
        """
        if (
            self._banks is None
            or cycle - self._banks_cycle >= self._bank_refresh_cycles
        ):
            configs = await with_deadline(
                self._ledger.get_bank_configs(), self._call_timeout, "get_bank_configs"
            )
            self._banks = MappingProxyType({b.address: b for b in configs})
            self._banks_cycle = cycle
            logger.info("Refreshed %d bank configs", len(configs))

        oracle_ids = sorted({b.oracle for b in self._banks.values()})
        prices = await with_deadline(
            self._oracle.get_prices(oracle_ids), self._call_timeout, "get_prices"
        )
        missing = set(oracle_ids) - set(prices)
        if missing:
            logger.warning("No price for %d oracle(s): %s", len(missing), sorted(missing))

        return CycleContext(
            cycle=cycle,
            banks=self._banks,
            prices=MappingProxyType(dict(prices)),
            fetched_at=self._clock(),
        )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def _get_accounts(self, ids: Sequence[str]) -> list[LendingAccount]:
        return await with_deadline(
            self._ledger.get_accounts(ids), self._call_timeout, "get_accounts"
        )

    async def _fetch_batch(self, batch: list[str]) -> list[LendingAccount]:
        """Fetch a batch; on failure fall back to one-by-one to isolate the culprit."""
        try:
            accounts = await self._get_accounts(batch)
        except Exception as e:
            if len(batch) == 1:
                self._record(batch[0], f"fetch failed: {e}")
                return []
            logger.warning(
                "Batch of %d accounts failed (%s); retrying individually", len(batch), e
            )
            accounts = []
            for account_id in batch:
                try:
                    accounts.extend(await self._get_accounts([account_id]))
                except Exception as inner:
                    self._record(account_id, f"fetch failed: {inner}")

        found = {a.address for a in accounts}
        for account_id in batch:
            if account_id not in found:
                self._record(account_id, "account not found")
        return accounts

    def _record(self, account: str, reason: str, stale: bool = False) -> None:
        self.stats.failures.append(ScanFailure(account, reason, stale))
        logger.warning("Skipping account %s: %s", account, reason)

    def _evaluate(
        self, account: LendingAccount, context: CycleContext
    ) -> HealthSnapshot | None:
        try:
            return self._calculator.evaluate(
                account, context.banks, context.prices, now=self._clock()
            )
        except StaleDataError as e:
            self._record(account.address, str(e), stale=True)
        except MissingDataError as e:
            self._record(account.address, str(e))
        return None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def scan(
        self, tracked: Iterable[str], context: CycleContext
    ) -> AsyncIterator[tuple[LendingAccount, HealthSnapshot]]:
        """Yield ``(account, snapshot)`` pairs as each batch lands.

        Batches complete in any order. Closing the generator early cancels
        batches that have not finished.
        """
        self.stats = ScanStats()
        ids = list(dict.fromkeys(tracked))
        batches = [
            ids[i : i + self._batch_size] for i in range(0, len(ids), self._batch_size)
        ]
        semaphore = asyncio.Semaphore(self._fetch_concurrency)

        async def run(batch: list[str]) -> list[LendingAccount]:
            async with semaphore:
                return await self._fetch_batch(batch)

        tasks = [asyncio.ensure_future(run(batch)) for batch in batches]
        try:
            for next_done in asyncio.as_completed(tasks):
                accounts = await next_done
                for account in accounts:
                    self.stats.accounts += 1
                    snapshot = self._evaluate(account, context)
                    if snapshot is not None:
                        yield account, snapshot
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        logger.info(
            "Scanned %d/%d accounts (%d skipped)",
            self.stats.accounts,
            len(ids),
            len(self.stats.failures),
        )
