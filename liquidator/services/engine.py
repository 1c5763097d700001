"""Engine orchestration — the scan → select → route → execute loop."""
from __future__ import annotations

import asyncio
import enum
import logging
from decimal import Decimal
from typing import Iterable

from ..errors import NoRouteError, TransientError, with_deadline
from ..interfaces.ledger import LedgerGateway
from ..models import (
    CycleMetrics,
    ExecutionOutcome,
    ExecutionResult,
    HealthSnapshot,
    LiquidationCandidate,
)
from .executor import LiquidationExecutor
from .routing import RouteFinder
from .scanner import AccountScanner, CycleContext
from .selector import CandidateSelector

logger = logging.getLogger(__name__)


async def find_candidates(
    ledger: LedgerGateway,
    scanner: AccountScanner,
    selector: CandidateSelector,
    cycle: int,
    whitelist: frozenset[str],
    blacklist: frozenset[str],
    min_bonus: Decimal = Decimal(0),
    tracked_accounts: Iterable[str] = (),
    call_timeout: float = 15.0,
) -> tuple[CycleContext, list[LiquidationCandidate]]:
    """Run the scan and selection half of a cycle without executing anything.

    Tracked ids are the whitelist when one is set, then ``tracked_accounts``,
    then every account the ledger lists for the group.
    """
    context = await scanner.prepare_cycle(cycle)
    if whitelist:
        tracked = sorted(whitelist)
    elif tracked_accounts:
        tracked = list(tracked_accounts)
    else:
        tracked = await with_deadline(
            ledger.list_account_ids(), call_timeout, "list_account_ids"
        )

    eligible: list[HealthSnapshot] = []
    async for _account, snapshot in scanner.scan(tracked, context):
        if selector.is_eligible(snapshot, whitelist, blacklist):
            eligible.append(snapshot)

    candidates = selector.select(
        eligible, whitelist, blacklist, min_bonus, banks=context.banks
    )
    return context, candidates


class EngineState(str, enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


class Engine:
    """Drives liquidation cycles on a fixed interval.

    Only execution attempts that were already dispatched survive ``stop()``;
    scanning and route requests are cancelled.
    """

    def __init__(
        self,
        ledger: LedgerGateway,
        scanner: AccountScanner,
        selector: CandidateSelector,
        route_finder: RouteFinder,
        executor: LiquidationExecutor,
        interval_seconds: float = 10.0,
        execution_concurrency: int = 2,
        max_slippage_bps: int = 100,
        min_bonus: Decimal = Decimal(0),
        tracked_accounts: Iterable[str] = (),
        whitelist: Iterable[str] = (),
        blacklist: Iterable[str] = (),
        call_timeout: float = 15.0,
    ) -> None:
        self._ledger = ledger
        self._scanner = scanner
        self._selector = selector
        self._route_finder = route_finder
        self._executor = executor
        self._interval = interval_seconds
        self._execution_concurrency = execution_concurrency
        self._max_slippage_bps = max_slippage_bps
        self._min_bonus = min_bonus
        self._tracked = tuple(tracked_accounts)
        self._whitelist: frozenset[str] = frozenset(whitelist)
        self._blacklist: frozenset[str] = frozenset(blacklist)
        self._call_timeout = call_timeout

        self._state = EngineState.STOPPED
        self._cycle = 0
        self._metrics = CycleMetrics()
        self._loop_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._stop_task: asyncio.Future | None = None
        self._executions: set[asyncio.Future] = set()

    # ------------------------------------------------------------------
    # Control surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def metrics(self) -> CycleMetrics:
        """Metrics of the last completed cycle."""
        return self._metrics

    def set_whitelist(self, ids: Iterable[str]) -> None:
        """Replace the whitelist; takes effect from the next cycle."""
        self._whitelist = frozenset(ids)
        logger.info("Whitelist set to %d account(s)", len(self._whitelist))

    def set_blacklist(self, ids: Iterable[str]) -> None:
        """Replace the blacklist; takes effect from the next cycle."""
        self._blacklist = frozenset(ids)
        logger.info("Blacklist set to %d account(s)", len(self._blacklist))

    async def start(self) -> None:
        if self._state is not EngineState.STOPPED:
            raise RuntimeError(f"Engine is {self._state.value}")
        self._state = EngineState.RUNNING
        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run_loop())
        logger.info(
            "Engine started (interval %.1fs, execution concurrency %d)",
            self._interval,
            self._execution_concurrency,
        )

    async def stop(self) -> None:
        """Cancel scanning and routing, drain dispatched executions.

        Concurrent callers all wait for the same shutdown.
        """
        if self._state is EngineState.STOPPED:
            return
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self._shutdown())
        await asyncio.shield(self._stop_task)

    async def _shutdown(self) -> None:
        self._state = EngineState.STOPPING
        logger.info("Engine stopping; draining %d execution(s)", len(self._executions))

        if self._stop_event is not None:
            self._stop_event.set()
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        if self._executions:
            await asyncio.gather(*list(self._executions), return_exceptions=True)

        self._state = EngineState.STOPPED
        self._stop_task = None
        logger.info("Engine stopped")

    async def wait(self) -> None:
        """Block until the loop task ends (i.e. until ``stop()`` is called)."""
        if self._loop_task is not None:
            await asyncio.gather(self._loop_task, return_exceptions=True)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run_loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Error in liquidation cycle %d: %s", self._cycle, e)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass

    async def _attempt(
        self, candidate: LiquidationCandidate, context: CycleContext
    ) -> ExecutionResult | None:
        """Route then execute one candidate; ``None`` means deferred for lack of a route."""
        asset_bank = context.banks[candidate.asset_bank]
        liability_bank = context.banks[candidate.liability_bank]

        try:
            route = await self._route_finder.find_route(
                asset_bank.mint,
                candidate.asset_amount,
                liability_bank.mint,
                self._max_slippage_bps,
            )
        except (NoRouteError, TransientError) as e:
            logger.info("Deferring %s: %s", candidate.account, e)
            return None

        task = asyncio.ensure_future(self._executor.execute(candidate, route))
        self._executions.add(task)
        task.add_done_callback(self._executions.discard)
        return await asyncio.shield(task)

    async def run_cycle(self) -> CycleMetrics:
        """Run one scan → select → route → execute pass and record its metrics."""
        self._cycle += 1
        cycle = self._cycle
        whitelist, blacklist = self._whitelist, self._blacklist

        context, candidates = await find_candidates(
            self._ledger,
            self._scanner,
            self._selector,
            cycle,
            whitelist,
            blacklist,
            self._min_bonus,
            self._tracked,
            self._call_timeout,
        )

        dispatch: list[LiquidationCandidate] = []
        locked = 0
        deferred = 0
        for candidate in candidates:
            if self._executor.locks.is_held(candidate.account):
                locked += 1
            elif len(dispatch) < self._execution_concurrency:
                dispatch.append(candidate)
            else:
                deferred += 1

        outcomes = await asyncio.gather(
            *(self._attempt(c, context) for c in dispatch), return_exceptions=True
        )

        attempted = succeeded = failed = no_route = 0
        skipped = locked
        for candidate, outcome in zip(dispatch, outcomes):
            if outcome is None:
                no_route += 1
            elif isinstance(outcome, BaseException):
                attempted += 1
                failed += 1
                logger.error("Liquidation of %s raised: %s", candidate.account, outcome)
            elif outcome.outcome is ExecutionOutcome.SKIPPED:
                skipped += 1
            else:
                attempted += 1
                if outcome.succeeded:
                    succeeded += 1
                else:
                    failed += 1

        self._metrics = CycleMetrics(
            cycle=cycle,
            accounts_scanned=self._scanner.stats.accounts,
            scan_failures=len(self._scanner.failures),
            candidates_found=len(candidates),
            executions_attempted=attempted,
            executions_succeeded=succeeded,
            executions_failed=failed,
            executions_skipped=skipped,
            deferred=deferred + no_route,
            no_route=no_route,
        )
        logger.info(
            "Cycle %d: scanned=%d failures=%d candidates=%d attempted=%d "
            "succeeded=%d failed=%d skipped=%d deferred=%d",
            cycle,
            self._metrics.accounts_scanned,
            self._metrics.scan_failures,
            self._metrics.candidates_found,
            attempted,
            succeeded,
            failed,
            skipped,
            self._metrics.deferred,
        )
        return self._metrics
