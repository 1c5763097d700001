"""Unit tests for margin account and bank payload parsing."""
from __future__ import annotations

import copy
from decimal import Decimal

import pytest

from liquidator.chains.solana.parser import (
    parse_balance,
    parse_bank,
    parse_margin_account,
)

PROGRAM = "prog111"
GROUP = "group111"


@pytest.fixture()
def account_payload() -> dict:
    return {
        "owner": PROGRAM,
        "data": {
            "parsed": {
                "type": "marginfiAccount",
                "info": {
                    "group": GROUP,
                    "authority": "wallet111",
                    "lendingAccount": {
                        "balances": [
                            {
                                "active": True,
                                "bankPk": "bank-sol",
                                "depositAmount": "2000000000",
                                "borrowAmount": "0",
                            },
                            {
                                "active": True,
                                "bankPk": "bank-usdc",
                                "depositAmount": "0",
                                "borrowAmount": "150000000",
                            },
                            {"active": False, "bankPk": "bank-old"},
                        ]
                    },
                },
            }
        },
    }


@pytest.fixture()
def bank_payload() -> dict:
    return {
        "owner": PROGRAM,
        "data": {
            "parsed": {
                "type": "bank",
                "info": {
                    "group": GROUP,
                    "mint": "mint-sol",
                    "mintDecimals": 9,
                    "symbol": "SOL",
                    "config": {
                        "assetWeightInit": "0.8",
                        "assetWeightMaint": "0.9",
                        "liabilityWeightInit": "1.25",
                        "liabilityWeightMaint": "1.1",
                        "depositLimit": "1000000000000",
                        "borrowLimit": "500000000000",
                        "oracleKeys": ["oracle-sol", "11111111111111111111111111111111"],
                    },
                },
            }
        },
    }


class TestParseBalance:
    def test_inactive_slot(self) -> None:
        assert parse_balance({"active": False, "bankPk": "b"}) is None

    def test_active_without_bank_raises(self) -> None:
        with pytest.raises(ValueError, match="bankPk"):
            parse_balance({"active": True})

    def test_negative_amount_raises(self) -> None:
        with pytest.raises(ValueError, match="negative"):
            parse_balance({"active": True, "bankPk": "b", "depositAmount": "-1"})

    def test_non_integer_amount_raises(self) -> None:
        with pytest.raises(ValueError, match="borrowAmount"):
            parse_balance({"active": True, "bankPk": "b", "borrowAmount": "1.5e"})


class TestParseMarginAccount:
    def test_parses_active_balances(self, account_payload: dict) -> None:
        account = parse_margin_account("acct-1", account_payload, PROGRAM, GROUP)

        assert account.address == "acct-1"
        assert account.owner == "wallet111"
        assert account.banks == ("bank-sol", "bank-usdc")
        assert account.balances[0].deposit_amount == 2_000_000_000
        assert account.balances[1].borrow_amount == 150_000_000

    def test_wrong_owner_raises(self, account_payload: dict) -> None:
        account_payload["owner"] = "someone-else"
        with pytest.raises(ValueError, match="owned by"):
            parse_margin_account("acct-1", account_payload, PROGRAM, GROUP)

    def test_wrong_group_raises(self, account_payload: dict) -> None:
        with pytest.raises(ValueError, match="group"):
            parse_margin_account("acct-1", account_payload, PROGRAM, "other-group")

    def test_wrong_type_raises(self, bank_payload: dict) -> None:
        with pytest.raises(ValueError, match="expected marginfiAccount"):
            parse_margin_account("acct-1", bank_payload, PROGRAM, GROUP)

    def test_undecoded_data_raises(self, account_payload: dict) -> None:
        account_payload["data"] = ["AAAA", "base64"]
        with pytest.raises(ValueError, match="not decoded"):
            parse_margin_account("acct-1", account_payload, PROGRAM, GROUP)


class TestParseBank:
    def test_parses_config(self, bank_payload: dict) -> None:
        bank = parse_bank("bank-sol", bank_payload, PROGRAM, GROUP)

        assert bank.mint == "mint-sol"
        assert bank.decimals == 9
        assert bank.oracle == "oracle-sol"
        assert bank.asset_weight_maint == Decimal("0.9")
        assert bank.liability_weight_init == Decimal("1.25")
        assert bank.deposit_limit == 1_000_000_000_000
        assert bank.liquidation_discount == Decimal("0.025")
        assert bank.symbol == "SOL"

    def test_explicit_discount(self, bank_payload: dict) -> None:
        bank_payload["data"]["parsed"]["info"]["config"]["liquidationDiscount"] = "0.05"
        assert parse_bank("b", bank_payload, PROGRAM, GROUP).liquidation_discount == Decimal("0.05")

    @pytest.mark.parametrize(
        "field,value,message",
        [
            ("assetWeightMaint", "1.1", "asset weight above 1"),
            ("liabilityWeightMaint", "0.9", "liability weight below 1"),
            ("assetWeightInit", "NaN", "out of range"),
            ("liabilityWeightInit", "abc", "not a number"),
            ("liquidationDiscount", "1", "below 1"),
        ],
    )
    def test_rejects_bad_weights(
        self, bank_payload: dict, field: str, value: str, message: str
    ) -> None:
        payload = copy.deepcopy(bank_payload)
        payload["data"]["parsed"]["info"]["config"][field] = value
        with pytest.raises(ValueError, match=message):
            parse_bank("b", payload, PROGRAM, GROUP)

    def test_requires_oracle(self, bank_payload: dict) -> None:
        bank_payload["data"]["parsed"]["info"]["config"]["oracleKeys"] = []
        with pytest.raises(ValueError, match="oracle"):
            parse_bank("b", bank_payload, PROGRAM, GROUP)
