"""Pure parsing functions for margin account and bank payloads — no I/O.

Payloads are the ``jsonParsed`` account objects returned by an RPC node with
the lending program's account decoder enabled::

    {"owner": "<program>", "data": {"parsed": {"type": "marginfiAccount",
                                               "info": {...}}}}

Everything downstream relies on the models built here, so every field is
checked and a malformed payload raises ``ValueError``.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from ...models import BalanceEntry, BankConfig, LendingAccount

ACCOUNT_TYPE = "marginfiAccount"
BANK_TYPE = "bank"

# Byte offset of the group key in each account layout (after the discriminator).
ACCOUNT_GROUP_OFFSET = 8
BANK_GROUP_OFFSET = 41


def _parsed_info(raw: dict[str, Any], expected_type: str) -> dict[str, Any]:
    parsed = raw.get("data", {})
    if not isinstance(parsed, dict):
        raise ValueError("account data is not decoded")
    parsed = parsed.get("parsed", {})
    if parsed.get("type") != expected_type:
        raise ValueError(f"expected {expected_type}, got {parsed.get('type')!r}")
    info = parsed.get("info")
    if not isinstance(info, dict):
        raise ValueError("missing account info")
    return info


def _amount(value: Any, name: str) -> int:
    try:
        amount = int(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{name} is not an integer: {value!r}") from e
    if amount < 0:
        raise ValueError(f"{name} is negative: {amount}")
    return amount


def _weight(value: Any, name: str) -> Decimal:
    try:
        weight = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{name} is not a number: {value!r}") from e
    if not weight.is_finite() or weight < 0:
        raise ValueError(f"{name} out of range: {value!r}")
    return weight


def check_owner(raw: dict[str, Any], program_id: str) -> None:
    owner = raw.get("owner")
    if owner != program_id:
        raise ValueError(f"owned by {owner}, not {program_id}")


def parse_balance(entry: dict[str, Any]) -> BalanceEntry | None:
    """Parse one balance slot; inactive slots return ``None``."""
    if not entry.get("active", False):
        return None
    bank = entry.get("bankPk")
    if not bank:
        raise ValueError("active balance without bankPk")
    return BalanceEntry(
        bank=bank,
        deposit_amount=_amount(entry.get("depositAmount", 0), "depositAmount"),
        borrow_amount=_amount(entry.get("borrowAmount", 0), "borrowAmount"),
    )


def parse_margin_account(
    address: str, raw: dict[str, Any], program_id: str, group: str
) -> LendingAccount:
    """Validate and convert a margin account payload."""
    check_owner(raw, program_id)
    info = _parsed_info(raw, ACCOUNT_TYPE)
    if info.get("group") != group:
        raise ValueError(f"account belongs to group {info.get('group')}")

    balances_raw = info.get("lendingAccount", {}).get("balances", [])
    balances = tuple(
        b for b in (parse_balance(entry) for entry in balances_raw) if b is not None
    )
    return LendingAccount(
        address=address,
        owner=info.get("authority", ""),
        balances=balances,
    )


def parse_bank(
    address: str, raw: dict[str, Any], program_id: str, group: str
) -> BankConfig:
    """Validate and convert a bank payload.

    Asset weights must lie in [0, 1] and liability weights be at least 1.
    """
    check_owner(raw, program_id)
    info = _parsed_info(raw, BANK_TYPE)
    if info.get("group") != group:
        raise ValueError(f"bank belongs to group {info.get('group')}")

    config = info.get("config", {})
    oracle_keys = config.get("oracleKeys") or []
    if not oracle_keys:
        raise ValueError("bank has no oracle")

    asset_init = _weight(config.get("assetWeightInit"), "assetWeightInit")
    asset_maint = _weight(config.get("assetWeightMaint"), "assetWeightMaint")
    liab_init = _weight(config.get("liabilityWeightInit"), "liabilityWeightInit")
    liab_maint = _weight(config.get("liabilityWeightMaint"), "liabilityWeightMaint")
    if asset_init > 1 or asset_maint > 1:
        raise ValueError("asset weight above 1")
    if liab_init < 1 or liab_maint < 1:
        raise ValueError("liability weight below 1")

    discount = _weight(config.get("liquidationDiscount", "0.025"), "liquidationDiscount")
    if discount >= 1:
        raise ValueError("liquidationDiscount must be below 1")

    return BankConfig(
        address=address,
        mint=info.get("mint", ""),
        decimals=_amount(info.get("mintDecimals"), "mintDecimals"),
        oracle=oracle_keys[0],
        asset_weight_init=asset_init,
        asset_weight_maint=asset_maint,
        liability_weight_init=liab_init,
        liability_weight_maint=liab_maint,
        deposit_limit=_amount(config.get("depositLimit", 0), "depositLimit"),
        borrow_limit=_amount(config.get("borrowLimit", 0), "borrowLimit"),
        liquidation_discount=discount,
        symbol=info.get("symbol", ""),
    )
