"""Candidate selection — eligibility policy, pair choice and ranking."""
from __future__ import annotations

import logging
from decimal import ROUND_FLOOR, Decimal, localcontext
from typing import AbstractSet, Callable, Iterable, Mapping

from ..models import BankConfig, BankPosition, HealthSnapshot, LiquidationCandidate
from .health import MONEY_CONTEXT

logger = logging.getLogger(__name__)

BonusEstimator = Callable[[HealthSnapshot, BankPosition, BankPosition, BankConfig], Decimal]

_ONE = Decimal(1)


def _floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def shortfall_of(snapshot: HealthSnapshot) -> Decimal:
    """Weighted debt not covered by weighted collateral; zero when healthy."""
    with localcontext(MONEY_CONTEXT):
        return max(snapshot.debt_value - snapshot.collateral_value, Decimal(0))


def restoring_seize_value(
    asset: BankPosition, liability: BankPosition, discount: Decimal, shortfall: Decimal
) -> Decimal:
    """Collateral value whose seizure brings the account back to zero shortfall.

    Each unit of seized value removes ``w_a`` of weighted collateral and
    ``(1 - discount) * w_l`` of weighted debt. When that spread is not
    positive the account cannot be restored, and the seizure is bounded by
    the shortfall itself.
    """
    with localcontext(MONEY_CONTEXT):
        asset_weight = asset.weighted_asset_value / asset.asset_value
        liability_weight = liability.weighted_liability_value / liability.liability_value
        spread = liability_weight * (_ONE - discount) - asset_weight
        if spread <= 0:
            return shortfall
        return shortfall / spread


def size_liquidation(
    asset: BankPosition,
    liability: BankPosition,
    discount: Decimal,
    shortfall: Decimal | None = None,
) -> tuple[int, int, Decimal]:
    """Size a liquidation of ``liability`` against ``asset`` collateral.

    The liquidator seizes collateral worth at most ``debt / (1 - discount)``
    and repays the discounted value of what it seized. With a ``shortfall``
    the seizure is further capped at :func:`restoring_seize_value`, so a
    deeper shortfall allows a larger liquidation.

    Returns:
        ``(asset_amount, liability_amount, seized_value)`` with amounts in
        native units.
    """
    with localcontext(MONEY_CONTEXT):
        if asset.asset_value <= 0 or liability.liability_value <= 0:
            return 0, 0, Decimal(0)
        if shortfall is not None and shortfall <= 0:
            return 0, 0, Decimal(0)

        seized_value = min(asset.asset_value, liability.liability_value / (_ONE - discount))
        if shortfall is not None:
            seized_value = min(
                seized_value, restoring_seize_value(asset, liability, discount, shortfall)
            )
        if seized_value == asset.asset_value:
            asset_amount = asset.deposit_amount
        else:
            asset_amount = _floor_int(
                Decimal(asset.deposit_amount) * seized_value / asset.asset_value
            )

        repaid_value = seized_value * (_ONE - discount)
        liability_amount = min(
            liability.borrow_amount,
            _floor_int(
                Decimal(liability.borrow_amount) * repaid_value / liability.liability_value
            ),
        )
    return asset_amount, liability_amount, seized_value


def default_bonus_estimator(
    snapshot: HealthSnapshot,
    asset: BankPosition,
    liability: BankPosition,
    asset_bank: BankConfig,
) -> Decimal:
    """Seized collateral value times the asset bank's liquidation discount."""
    _, _, seized_value = size_liquidation(
        asset, liability, asset_bank.liquidation_discount, shortfall_of(snapshot)
    )
    with localcontext(MONEY_CONTEXT):
        return seized_value * asset_bank.liquidation_discount


def is_eligible(
    snapshot: HealthSnapshot,
    whitelist: AbstractSet[str],
    blacklist: AbstractSet[str],
) -> bool:
    """Health below one, not blacklisted, and whitelisted if a whitelist exists."""
    if not snapshot.is_liquidatable:
        return False
    if snapshot.account in blacklist:
        return False
    if whitelist and snapshot.account not in whitelist:
        return False
    return True


class CandidateSelector:
    """Turns health snapshots into a ranked list of liquidation candidates."""

    def __init__(
        self,
        own_account: str = "",
        estimator: BonusEstimator = default_bonus_estimator,
    ) -> None:
        self._own_account = own_account
        self._estimator = estimator

    def is_eligible(
        self,
        snapshot: HealthSnapshot,
        whitelist: AbstractSet[str],
        blacklist: AbstractSet[str],
    ) -> bool:
        if self._own_account and snapshot.account == self._own_account:
            return False
        return is_eligible(snapshot, whitelist, blacklist)

    def _build(
        self, snapshot: HealthSnapshot, banks: Mapping[str, BankConfig]
    ) -> LiquidationCandidate | None:
        deposits = [p for p in snapshot.positions if p.deposit_amount > 0]
        borrows = [p for p in snapshot.positions if p.borrow_amount > 0]
        if not deposits or not borrows:
            logger.debug("Account %s has nothing to seize", snapshot.account)
            return None

        asset = max(deposits, key=lambda p: p.weighted_asset_value)
        liability = max(borrows, key=lambda p: p.weighted_liability_value)
        asset_bank = banks.get(asset.bank)
        if asset_bank is None:
            return None

        asset_amount, liability_amount, _ = size_liquidation(
            asset, liability, asset_bank.liquidation_discount, shortfall_of(snapshot)
        )
        if asset_amount <= 0:
            return None

        return LiquidationCandidate(
            account=snapshot.account,
            health_ratio=snapshot.health_ratio,
            asset_bank=asset.bank,
            liability_bank=liability.bank,
            asset_amount=asset_amount,
            liability_amount=liability_amount,
            estimated_bonus=self._estimator(snapshot, asset, liability, asset_bank),
        )

    def select(
        self,
        snapshots: Iterable[HealthSnapshot],
        whitelist: AbstractSet[str],
        blacklist: AbstractSet[str],
        threshold: Decimal = Decimal(0),
        banks: Mapping[str, BankConfig] | None = None,
    ) -> list[LiquidationCandidate]:
        """Return eligible candidates, most profitable first.

        Args:
            threshold: Minimum estimated bonus for a candidate to be kept.
            banks: Bank configs of the cycle the snapshots were computed in.
        """
        banks = banks or {}
        candidates: list[LiquidationCandidate] = []

        for snapshot in snapshots:
            if not self.is_eligible(snapshot, whitelist, blacklist):
                continue
            candidate = self._build(snapshot, banks)
            if candidate is None:
                continue
            if candidate.estimated_bonus < threshold:
                logger.debug(
                    "Account %s bonus %s below threshold %s",
                    candidate.account,
                    candidate.estimated_bonus,
                    threshold,
                )
                continue
            candidates.append(candidate)

        candidates.sort(key=lambda c: (-c.estimated_bonus, c.health_ratio))
        return candidates
