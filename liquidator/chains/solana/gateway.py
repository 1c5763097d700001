"""Ledger gateway over Solana JSON-RPC for the lending program."""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Sequence, TypeVar

from ...config import ProtocolConfig
from ...errors import LedgerError, SimulationFailedError, SubmissionError
from ...models import (
    BankConfig,
    LendingAccount,
    SignedTransaction,
    SimulationResult,
    SubmissionReceipt,
)
from . import parser
from .client import RpcError, SolanaClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

# sendTransaction preflight failure
_PREFLIGHT_FAILURE = -32002


class MarginLedgerGateway:
    """Reads margin accounts and banks of one group; sends liquidations."""

    def __init__(self, client: SolanaClient, config: ProtocolConfig) -> None:
        self._client = client
        self._program_id = config.program_id
        self._group = config.group

    async def _read(self, call: Awaitable[T], what: str) -> T:
        try:
            return await call
        except RuntimeError as e:
            raise LedgerError(f"{what}: {e}") from e

    def _group_filter(self, offset: int) -> list[dict[str, Any]]:
        return [{"memcmp": {"offset": offset, "bytes": self._group}}]

    async def ping(self) -> None:
        """Raise :class:`LedgerError` unless a node answers."""
        slot = await self._read(self._client.get_slot(), "getSlot")
        logger.info("Ledger reachable at slot %d", slot)

    async def list_account_ids(self) -> list[str]:
        accounts = await self._read(
            self._client.get_program_accounts(
                self._program_id,
                filters=self._group_filter(parser.ACCOUNT_GROUP_OFFSET),
                with_data=False,
            ),
            "getProgramAccounts",
        )
        return [a["pubkey"] for a in accounts if a.get("pubkey")]

    async def get_accounts(self, ids: Sequence[str]) -> list[LendingAccount]:
        """Fetch and validate margin accounts; unknown or malformed ones are left out."""
        ids = list(ids)
        raw_accounts = await self._read(
            self._client.get_multiple_accounts(ids), "getMultipleAccounts"
        )

        accounts: list[LendingAccount] = []
        for address, raw in zip(ids, raw_accounts):
            if raw is None:
                continue
            try:
                accounts.append(
                    parser.parse_margin_account(address, raw, self._program_id, self._group)
                )
            except ValueError as e:
                logger.warning("Invalid margin account %s: %s", address, e)
        return accounts

    def _parse_banks(self, pairs: list[tuple[str, dict[str, Any] | None]]) -> list[BankConfig]:
        banks: list[BankConfig] = []
        for address, raw in pairs:
            if raw is None:
                continue
            try:
                banks.append(parser.parse_bank(address, raw, self._program_id, self._group))
            except ValueError as e:
                logger.debug("Skipping bank %s: %s", address, e)
        return banks

    async def get_bank_configs(self, ids: Sequence[str] | None = None) -> list[BankConfig]:
        """Banks by address, or every bank of the group when ``ids`` is None."""
        if ids is None:
            raw = await self._read(
                self._client.get_program_accounts(
                    self._program_id, filters=self._group_filter(parser.BANK_GROUP_OFFSET)
                ),
                "getProgramAccounts",
            )
            pairs = [(a.get("pubkey", ""), a.get("account")) for a in raw]
        else:
            ids = list(ids)
            raw_accounts = await self._read(
                self._client.get_multiple_accounts(ids), "getMultipleAccounts"
            )
            pairs = list(zip(ids, raw_accounts))
        return self._parse_banks(pairs)

    async def simulate_transaction(self, tx: SignedTransaction) -> SimulationResult:
        value = await self._read(
            self._client.simulate_transaction(tx.payload), "simulateTransaction"
        )
        err = value.get("err")
        return SimulationResult(
            ok=err is None,
            error=None if err is None else str(err),
            logs=tuple(value.get("logs") or ()),
            units_consumed=int(value.get("unitsConsumed") or 0),
        )

    async def submit_transaction(self, tx: SignedTransaction) -> SubmissionReceipt:
        try:
            signature = await self._client.send_transaction(tx.payload)
        except RpcError as e:
            if e.code == _PREFLIGHT_FAILURE:
                raise SimulationFailedError(str(e)) from e
            raise SubmissionError(str(e)) from e
        except RuntimeError as e:
            raise SubmissionError(str(e)) from e

        try:
            slot = await self._client.get_slot()
        except RuntimeError as e:
            logger.warning("Sent %s but could not read slot: %s", signature, e)
            slot = 0
        return SubmissionReceipt(signature=signature or tx.signature, slot=slot)
