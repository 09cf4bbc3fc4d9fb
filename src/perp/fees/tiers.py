"""Trader fee tiers.

Every trade earns the trader points equal to its USD volume. On the first
action of a new day, the points of the trailing window are summed and the
best tier reached is cached as that day's fee multiplier. Fees for the rest
of the day are scaled by the cached multiplier.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from perp.config import FeeSettings
from perp.exceptions import InvalidConfiguration
from perp.fees.models import FeeTier, TraderDailyInfo, TraderInfo
from perp.fixed_point import ONE, ZERO, mul_floor
from perp.logging import get_logger
from perp.storage import SINGLETON, Table

if TYPE_CHECKING:
    from perp.storage import Storage

logger = get_logger(__name__)

MAX_FEE_TIERS = 8


class FeeTierRegistry:
    """Trader points bookkeeping and tiered fee discounts.

    Args:
        storage: Keyed storage holding tier and trader tables.
        settings: Day length and trailing window.
    """

    def __init__(self, storage: Storage, settings: FeeSettings | None = None) -> None:
        self._storage = storage
        self._settings = settings or FeeSettings()

    def current_day(self, now: int) -> int:
        return now // self._settings.seconds_per_day

    def get_fee_tiers(self) -> list[FeeTier]:
        return self._storage.may_load(Table.FEE_TIERS, SINGLETON, [])

    def get_trader_info(self, trader: str) -> TraderInfo:
        return self._storage.may_load(Table.TRADER_INFOS, trader, TraderInfo())

    def get_trader_daily_info(self, trader: str, day: int) -> TraderDailyInfo:
        return self._storage.may_load(
            Table.TRADER_DAILY_INFOS, (trader, day), TraderDailyInfo()
        )

    def set_fee_tiers(self, tiers: list[FeeTier]) -> None:
        """Replace the tier table.

        Raises:
            InvalidConfiguration: On more than 8 tiers, thresholds that do not
                strictly increase, or multipliers outside (0, 1].
        """
        if len(tiers) > MAX_FEE_TIERS:
            raise InvalidConfiguration(f"At most {MAX_FEE_TIERS} fee tiers")
        for prev, tier in zip(tiers, tiers[1:]):
            if tier.points_threshold <= prev.points_threshold:
                raise InvalidConfiguration("Fee tier thresholds must strictly increase")
        for tier in tiers:
            if not ZERO < tier.fee_multiplier <= ONE:
                raise InvalidConfiguration(
                    f"Fee multiplier {tier.fee_multiplier} outside (0, 1]"
                )

        self._storage.set(Table.FEE_TIERS, SINGLETON, list(tiers))
        logger.info("fee_tiers_set", count=len(tiers))

    def calculate_fee_amount(self, trader: str, normal_fee: int, now: int) -> int:
        """Apply today's multiplier. Without one the fee is unchanged.

        Before the trader's first action of the day the multiplier is the one
        ``update_trader_points`` is about to cache, so fees can be computed
        before points are credited. Nothing is written.
        """
        day = self.current_day(now)
        if self.get_trader_info(trader).last_day_updated < day:
            multiplier = self._fee_multiplier(self._trailing_points(trader, day))
        else:
            multiplier = self.get_trader_daily_info(trader, day).fee_multiplier_cache
        if multiplier == 0:
            return normal_fee
        return mul_floor(normal_fee, multiplier)

    def update_trader_points(self, trader: str, volume_usd: int, now: int) -> None:
        """Credit volume to today's points, refreshing the tier on a new day."""
        day = self.current_day(now)
        info = self.get_trader_info(trader)
        daily = self.get_trader_daily_info(trader, day)

        if info.last_day_updated < day:
            info.trailing_points = self._trailing_points(trader, day)
            info.last_day_updated = day
            daily.fee_multiplier_cache = self._fee_multiplier(info.trailing_points)
            self._storage.set(Table.TRADER_INFOS, trader, info)
            logger.debug(
                "trader_tier_refreshed",
                trader=trader,
                day=day,
                trailing_points=info.trailing_points,
                fee_multiplier=str(daily.fee_multiplier_cache),
            )

        daily.points += volume_usd
        self._storage.set(Table.TRADER_DAILY_INFOS, (trader, day), daily)

    def _trailing_points(self, trader: str, day: int) -> int:
        first_day = max(0, day - self._settings.fee_tier_trailing_days)
        return sum(
            self.get_trader_daily_info(trader, past_day).points
            for past_day in range(first_day, day)
        )

    def _fee_multiplier(self, trailing_points: int) -> Decimal:
        multiplier = ZERO
        for tier in self.get_fee_tiers():
            if trailing_points >= tier.points_threshold:
                multiplier = tier.fee_multiplier
        return multiplier
