"""Stateful sliding-window open interest tracking.

Each trade's USD size is added to the bucket of the window it was opened in.
Impact pricing sums the buckets of the last ``windows_count`` windows, so a
trade's influence decays away as its window ages out.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING

from perp.config import PriceImpactSettings
from perp.exceptions import InvalidConfiguration
from perp.fixed_point import ZERO, fixed, mul_floor, saturating_sub, to_uint_floor
from perp.logging import get_logger
from perp.price_impact import windows
from perp.price_impact.models import OiWindowsSettings, PairDepth, PairOi
from perp.storage import SINGLETON, Table

if TYPE_CHECKING:
    from perp.models import Trade, TradeInfo
    from perp.storage import Storage

logger = get_logger(__name__)


class PriceImpactEngine:
    """Open interest windows and depth-based price impact.

    Args:
        storage: Keyed storage holding window tables.
        settings: Window count limits.
    """

    def __init__(self, storage: Storage, settings: PriceImpactSettings | None = None) -> None:
        self._storage = storage
        self._settings = settings or PriceImpactSettings()

    def get_windows_settings(self) -> OiWindowsSettings:
        return self._storage.may_load(Table.OI_WINDOWS_SETTINGS, SINGLETON, OiWindowsSettings())

    def get_pair_depth(self, pair_index: int) -> PairDepth:
        return self._storage.may_load(Table.PAIR_DEPTHS, pair_index, PairDepth())

    def get_window(self, pair_index: int, window_id: int, windows_count: int) -> PairOi:
        return self._storage.may_load(
            Table.OI_WINDOWS, (pair_index, window_id, windows_count), PairOi()
        )

    def get_price_impact_oi(self, pair_index: int, long: bool, now: int) -> int:
        """USD open interest on one side across all active windows."""
        settings = self.get_windows_settings()
        if not settings.enabled:
            return 0

        current_id = windows.window_id(now, settings)
        earliest_id = windows.earliest_active_window_id(current_id, settings.windows_count)
        return sum(
            self.get_window(pair_index, window_id, settings.windows_count).side(long)
            for window_id in range(earliest_id, current_id + 1)
        )

    def get_trade_price_impact(
        self,
        open_price: Decimal,
        pair_index: int,
        long: bool,
        trade_oi_usd: int,
        now: int,
    ) -> tuple[Decimal, Decimal]:
        """Impact for a new trade; longs use depth above, shorts depth below.

        With windows disabled there is no impact at all.
        """
        if not self.get_windows_settings().enabled:
            return ZERO, open_price

        depth = self.get_pair_depth(pair_index).side(long)
        start_oi_usd = self.get_price_impact_oi(pair_index, long, now) if depth > 0 else 0
        return windows.get_trade_price_impact(
            open_price, long, start_oi_usd, trade_oi_usd, depth
        )

    def add_price_impact_open_interest(
        self,
        trade: Trade,
        trade_info: TradeInfo,
        position_collateral: int,
        collateral_price: Decimal,
        now: int,
    ) -> TradeInfo:
        """Add a trade's size to the current window.

        If the trade already contributed to a still-active window, that
        contribution is moved: removed from its window, re-valued at the
        current collateral price, and added to the current window together
        with the new size.

        Returns:
            The trade info with the new window bookkeeping.
        """
        settings = self.get_windows_settings()
        if not settings.enabled:
            return trade_info

        current_id = windows.window_id(now, settings)
        oi_delta_usd = mul_floor(position_collateral, collateral_price)

        if trade_info.last_oi_update_ts > 0:
            last_id = windows.window_id(trade_info.last_oi_update_ts, settings)
            earliest_id = windows.earliest_active_window_id(current_id, settings.windows_count)
            if last_id >= earliest_id and trade_info.last_window_oi_usd > 0:
                self._decrease_window(
                    trade.pair_index, last_id, settings, trade.long, trade_info.last_window_oi_usd
                )
                with fixed():
                    revalued = (
                        Decimal(trade_info.last_window_oi_usd)
                        * collateral_price
                        / trade_info.collateral_price_usd
                    )
                oi_delta_usd += to_uint_floor(revalued)

        window = self.get_window(trade.pair_index, current_id, settings.windows_count)
        if trade.long:
            window.oi_long_usd += oi_delta_usd
        else:
            window.oi_short_usd += oi_delta_usd
        self._storage.set(
            Table.OI_WINDOWS, (trade.pair_index, current_id, settings.windows_count), window
        )

        logger.debug(
            "price_impact_oi_added",
            pair_index=trade.pair_index,
            window_id=current_id,
            long=trade.long,
            oi_delta_usd=oi_delta_usd,
        )

        return replace(
            trade_info,
            last_oi_update_ts=now,
            collateral_price_usd=collateral_price,
            last_window_oi_usd=oi_delta_usd,
        )

    def remove_price_impact_open_interest(
        self,
        trade: Trade,
        trade_info: TradeInfo,
        oi_delta_collateral: int,
        now: int,
    ) -> TradeInfo:
        """Retire up to ``oi_delta_collateral`` of a trade's window contribution.

        Valued at the collateral price recorded when it was added, and never
        more than the trade actually contributed. Nothing happens if the
        trade never contributed or its window has aged out.
        """
        settings = self.get_windows_settings()
        if (
            oi_delta_collateral == 0
            or trade_info.last_oi_update_ts == 0
            or not settings.enabled
        ):
            return trade_info

        current_id = windows.window_id(now, settings)
        add_id = windows.window_id(trade_info.last_oi_update_ts, settings)
        if not windows.is_window_potentially_active(
            add_id, current_id, self._settings.max_windows_count
        ):
            return trade_info

        oi_delta_usd = min(
            mul_floor(oi_delta_collateral, trade_info.collateral_price_usd),
            trade_info.last_window_oi_usd,
        )
        self._decrease_window(trade.pair_index, add_id, settings, trade.long, oi_delta_usd)

        logger.debug(
            "price_impact_oi_removed",
            pair_index=trade.pair_index,
            window_id=add_id,
            long=trade.long,
            oi_delta_usd=oi_delta_usd,
        )

        return replace(
            trade_info,
            last_window_oi_usd=trade_info.last_window_oi_usd - oi_delta_usd,
        )

    # ── Admin ────────────────────────────────────

    def set_windows_settings(self, start_ts: int, windows_duration: int, windows_count: int) -> None:
        if windows_count > self._settings.max_windows_count:
            raise InvalidConfiguration(
                f"Windows count {windows_count} above max {self._settings.max_windows_count}"
            )
        if windows_count > 0 and windows_duration == 0:
            raise InvalidConfiguration("Windows duration must be positive")

        settings = OiWindowsSettings(
            start_ts=start_ts,
            windows_duration=windows_duration,
            windows_count=windows_count,
        )
        self._storage.set(Table.OI_WINDOWS_SETTINGS, SINGLETON, settings)
        logger.info(
            "oi_windows_settings_set",
            start_ts=start_ts,
            windows_duration=windows_duration,
            windows_count=windows_count,
        )

    def set_pair_depth(self, pair_index: int, above_usd: int, below_usd: int) -> None:
        depth = PairDepth(one_percent_depth_above_usd=above_usd, one_percent_depth_below_usd=below_usd)
        self._storage.set(Table.PAIR_DEPTHS, pair_index, depth)
        logger.info("pair_depth_set", pair_index=pair_index, above_usd=above_usd, below_usd=below_usd)

    def _decrease_window(
        self,
        pair_index: int,
        window_id: int,
        settings: OiWindowsSettings,
        long: bool,
        amount_usd: int,
    ) -> None:
        key = (pair_index, window_id, settings.windows_count)
        window = self.get_window(pair_index, window_id, settings.windows_count)
        if long:
            window.oi_long_usd = saturating_sub(window.oi_long_usd, amount_usd)
        else:
            window.oi_short_usd = saturating_sub(window.oi_short_usd, amount_usd)
        self._storage.set(Table.OI_WINDOWS, key, window)
