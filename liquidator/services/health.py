"""Account health evaluation — pure, no I/O."""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Context, Decimal, localcontext
from typing import Mapping

from ..errors import MissingDataError, StaleDataError
from ..models import (
    INFINITE_HEALTH,
    BankConfig,
    BankPosition,
    HealthSnapshot,
    LendingAccount,
    MarginRequirement,
    OraclePrice,
)

# One fixed context for every monetary computation so repeated evaluation of
# the same inputs is bit-identical regardless of the caller's context.
MONEY_CONTEXT = Context(prec=34, rounding=ROUND_HALF_EVEN)

_ZERO = Decimal(0)


def token_value(amount: int, decimals: int, price: Decimal) -> Decimal:
    """Value of ``amount`` native units at ``price`` per whole token."""
    with localcontext(MONEY_CONTEXT):
        return Decimal(amount).scaleb(-decimals) * price


class HealthCalculator:
    """Computes weighted collateral/debt and the health ratio of an account.

    Collateral is credited at ``amount * price * asset_weight`` and debt is
    charged at ``amount * price * liability_weight``. Asset weights are at most
    one and liability weights at least one, so both push the ratio down.
    """

    def __init__(
        self, max_price_age_seconds: float = 60.0, conservative_pricing: bool = False
    ) -> None:
        self.max_price_age_seconds = max_price_age_seconds
        self.conservative_pricing = conservative_pricing

    def _check_price(self, price: OraclePrice, now: datetime) -> None:
        age = (now - price.publish_time).total_seconds()
        if age > self.max_price_age_seconds:
            raise StaleDataError(price.asset_id, age, self.max_price_age_seconds)

    def _asset_price(self, price: OraclePrice) -> Decimal:
        if not self.conservative_pricing:
            return price.price
        with localcontext(MONEY_CONTEXT):
            return max(price.price - price.confidence, _ZERO)

    def _liability_price(self, price: OraclePrice) -> Decimal:
        if not self.conservative_pricing:
            return price.price
        with localcontext(MONEY_CONTEXT):
            return price.price + price.confidence

    def evaluate(
        self,
        account: LendingAccount,
        banks: Mapping[str, BankConfig],
        prices: Mapping[str, OraclePrice],
        now: datetime | None = None,
        requirement: MarginRequirement = MarginRequirement.MAINTENANCE,
    ) -> HealthSnapshot:
        """Evaluate ``account`` against one cycle's bank and price snapshot.

        Args:
            banks: Bank configs keyed by bank address.
            prices: Oracle prices keyed by the bank's ``oracle`` id.
            now: Evaluation instant; defaults to the current UTC time.

        Raises:
            StaleDataError: a referenced price is older than the bound.
            MissingDataError: a referenced bank or price is unknown.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        positions: list[BankPosition] = []
        collateral = _ZERO
        debt = _ZERO

        with localcontext(MONEY_CONTEXT):
            for entry in account.balances:
                if entry.is_empty:
                    continue

                bank = banks.get(entry.bank)
                if bank is None:
                    raise MissingDataError(
                        f"Account {account.address} references unknown bank {entry.bank}"
                    )
                price = prices.get(bank.oracle)
                if price is None:
                    raise MissingDataError(
                        f"No price for oracle {bank.oracle} (bank {bank.address})"
                    )
                self._check_price(price, now)

                asset_value = token_value(
                    entry.deposit_amount, bank.decimals, self._asset_price(price)
                )
                liability_value = token_value(
                    entry.borrow_amount, bank.decimals, self._liability_price(price)
                )
                weighted_asset = asset_value * bank.asset_weight(requirement)
                weighted_liability = liability_value * bank.liability_weight(requirement)

                collateral += weighted_asset
                debt += weighted_liability
                positions.append(
                    BankPosition(
                        bank=bank.address,
                        mint=bank.mint,
                        deposit_amount=entry.deposit_amount,
                        borrow_amount=entry.borrow_amount,
                        price=price.price,
                        asset_value=asset_value,
                        liability_value=liability_value,
                        weighted_asset_value=weighted_asset,
                        weighted_liability_value=weighted_liability,
                    )
                )

            ratio = INFINITE_HEALTH if debt == 0 else collateral / debt

        return HealthSnapshot(
            account=account.address,
            collateral_value=collateral,
            debt_value=debt,
            health_ratio=ratio,
            computed_at=now,
            requirement=requirement,
            positions=tuple(positions),
        )
