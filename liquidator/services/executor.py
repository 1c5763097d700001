"""Liquidation execution — lock, build, sign, simulate, submit."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import (
    LiquidatorError,
    NoRouteError,
    SimulationFailedError,
    TransientError,
    with_deadline,
)
from ..interfaces.ledger import LedgerGateway
from ..interfaces.signer import Signer
from ..models import (
    ExecutionOutcome,
    ExecutionResult,
    Instruction,
    LiquidationCandidate,
    LiquidationTransaction,
    SwapRoute,
)
from .routing import RouteFinder

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RouteExpiredError(LiquidatorError):
    pass


class ExecutionLocks:
    """Process-wide table of accounts with an attempt in flight.

    Acquisition never waits. The check and the insert happen without an
    intervening ``await``, so it is atomic on the event loop.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def try_acquire(self, account: str) -> bool:
        if account in self._held:
            return False
        self._held.add(account)
        return True

    def release(self, account: str) -> None:
        self._held.discard(account)

    def is_held(self, account: str) -> bool:
        return account in self._held

    def __len__(self) -> int:
        return len(self._held)


class LiquidationExecutor:
    """Runs one liquidation attempt per call, at most one per account at a time."""

    def __init__(
        self,
        ledger: LedgerGateway,
        signer: Signer,
        program_id: str,
        liquidator_account: str,
        route_finder: RouteFinder | None = None,
        locks: ExecutionLocks | None = None,
        max_attempts: int = 3,
        backoff_min: float = 0.5,
        backoff_max: float = 4.0,
        call_timeout: float = 15.0,
        dry_run: bool = False,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._ledger = ledger
        self._signer = signer
        self._program_id = program_id
        self._liquidator_account = liquidator_account
        self._route_finder = route_finder
        self.locks = locks or ExecutionLocks()
        self._max_attempts = max_attempts
        self._backoff_min = backoff_min
        self._backoff_max = backoff_max
        self._call_timeout = call_timeout
        self._dry_run = dry_run
        self._clock = clock

    # ------------------------------------------------------------------
    # Transaction building
    # ------------------------------------------------------------------

    def build_transaction(
        self, candidate: LiquidationCandidate, route: SwapRoute
    ) -> LiquidationTransaction:
        """Liquidate, withdraw the seized collateral, swap it, repay the debt."""
        liquidator = self._liquidator_account
        instructions = [
            Instruction(
                program=self._program_id,
                name="lending_account_liquidate",
                accounts=(liquidator, candidate.account, candidate.asset_bank, candidate.liability_bank),
                data={"asset_amount": candidate.asset_amount},
            ),
            Instruction(
                program=self._program_id,
                name="lending_account_withdraw",
                accounts=(liquidator, candidate.asset_bank),
                data={"amount": route.in_amount},
            ),
        ]
        for i, leg in enumerate(route.legs):
            last = i == len(route.legs) - 1
            instructions.append(
                Instruction(
                    program=leg.amm,
                    name="swap",
                    accounts=(leg.input_mint, leg.output_mint),
                    data={
                        "in_amount": leg.in_amount,
                        "min_out_amount": route.min_out_amount if last else 0,
                    },
                )
            )
        instructions.append(
            Instruction(
                program=self._program_id,
                name="lending_account_repay",
                accounts=(liquidator, candidate.liability_bank),
                data={"amount": min(route.min_out_amount, candidate.liability_amount)},
            )
        )
        return LiquidationTransaction(
            fee_payer=self._signer.public_key,
            liquidatee=candidate.account,
            instructions=tuple(instructions),
            route=route,
        )

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    async def _with_retries(self, call: Callable[[], Awaitable[T]]) -> T:
        """Run ``call`` with exponential backoff on transient errors only."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=wait_exponential(
                multiplier=self._backoff_min, min=self._backoff_min, max=self._backoff_max
            ),
            retry=retry_if_exception_type(TransientError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await call()
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self, candidate: LiquidationCandidate, route: SwapRoute
    ) -> ExecutionResult:
        """Attempt the liquidation of ``candidate`` along ``route``.

        Returns ``skipped`` at once when another attempt for the same account
        holds the lock. The lock is released on every exit path.
        """
        account = candidate.account
        if not self.locks.try_acquire(account):
            logger.info("Liquidation of %s already in flight; skipping", account)
            return ExecutionResult(ExecutionOutcome.SKIPPED, account, "lock held")

        try:
            return await self._execute_locked(candidate, route)
        finally:
            self.locks.release(account)

    async def _fresh_route(self, route: SwapRoute) -> SwapRoute | None:
        if not route.is_expired(self._clock()):
            return route
        if self._route_finder is None:
            return None
        logger.info("Route for %s expired; re-quoting", route.input_mint)
        try:
            return await self._route_finder.refresh(route)
        except (NoRouteError, TransientError) as e:
            logger.warning("Route refresh failed: %s", e)
            return None

    async def _execute_locked(
        self, candidate: LiquidationCandidate, route: SwapRoute
    ) -> ExecutionResult:
        account = candidate.account

        fresh = await self._fresh_route(route)
        if fresh is None:
            return ExecutionResult(ExecutionOutcome.EXPIRED, account, "route expired")
        route = fresh

        tx = self.build_transaction(candidate, route)
        signed = await with_deadline(self._signer.sign(tx), self._call_timeout, "sign")

        # Simulation transport faults are retried; a failed simulation is not.
        try:
            simulation = await self._with_retries(
                lambda: with_deadline(
                    self._ledger.simulate_transaction(signed),
                    self._call_timeout,
                    "simulate_transaction",
                )
            )
        except TransientError as e:
            logger.error("Simulation for %s unavailable: %s", account, e)
            return ExecutionResult(
                ExecutionOutcome.SUBMISSION_FAILED, account, f"simulation unavailable: {e}"
            )

        if not simulation.ok:
            logger.info("Simulation failed for %s: %s", account, simulation.error)
            return ExecutionResult(
                ExecutionOutcome.SIMULATION_FAILED, account, simulation.error or ""
            )

        if self._dry_run:
            logger.info("Dry run: liquidation of %s simulated OK", account)
            return ExecutionResult(
                ExecutionOutcome.SKIPPED, account, "dry run: simulation passed"
            )

        attempts = 0

        async def submit():
            nonlocal attempts
            if route.is_expired(self._clock()):
                raise RouteExpiredError(f"route expired before attempt {attempts + 1}")
            attempts += 1
            return await with_deadline(
                self._ledger.submit_transaction(signed),
                self._call_timeout,
                "submit_transaction",
            )

        try:
            receipt = await self._with_retries(submit)
        except RouteExpiredError as e:
            logger.warning("Not submitting liquidation of %s: %s", account, e)
            return ExecutionResult(
                ExecutionOutcome.EXPIRED, account, str(e), attempts=attempts
            )
        except SimulationFailedError as e:
            logger.info("Preflight rejected liquidation of %s: %s", account, e)
            return ExecutionResult(
                ExecutionOutcome.SIMULATION_FAILED, account, str(e), attempts=attempts
            )
        except TransientError as e:
            logger.error(
                "Submission of %s failed after %d attempt(s): %s", account, attempts, e
            )
            return ExecutionResult(
                ExecutionOutcome.SUBMISSION_FAILED, account, str(e), attempts=attempts
            )

        logger.info(
            "Liquidated %s: signature=%s slot=%d", account, receipt.signature, receipt.slot
        )
        return ExecutionResult(
            ExecutionOutcome.SUCCESS,
            account,
            signature=receipt.signature,
            slot=receipt.slot,
            attempts=attempts,
        )
