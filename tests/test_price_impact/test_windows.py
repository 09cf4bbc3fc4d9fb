"""Tests for window arithmetic and the price impact formula."""

from decimal import Decimal

import pytest

from perp.price_impact.models import OiWindowsSettings
from perp.price_impact.windows import (
    earliest_active_window_id,
    get_trade_price_impact,
    is_window_potentially_active,
    window_id,
)


class TestWindowIds:
    def test_window_id(self) -> None:
        settings = OiWindowsSettings(start_ts=0, windows_duration=100, windows_count=5)
        assert window_id(1000, settings) == 10
        assert window_id(1099, settings) == 10

    def test_before_start_is_window_zero(self) -> None:
        settings = OiWindowsSettings(start_ts=500, windows_duration=100, windows_count=5)
        assert window_id(100, settings) == 0

    @pytest.mark.parametrize(
        "current, count, expected",
        [(10, 5, 6), (2, 5, 0), (10, 1, 10)],
    )
    def test_earliest_active_window_id(self, current: int, count: int, expected: int) -> None:
        assert earliest_active_window_id(current, count) == expected

    def test_potentially_active(self) -> None:
        assert is_window_potentially_active(6, 10, 5)
        assert is_window_potentially_active(4, 10, 7)
        assert not is_window_potentially_active(5, 10, 5)


class TestTradePriceImpact:
    def test_zero_depth_means_no_impact(self) -> None:
        assert get_trade_price_impact(Decimal("100"), True, 5000, 5000, 0) == (
            Decimal("0"),
            Decimal("100"),
        )

    def test_long_pays_above(self) -> None:
        # (1000 + 2000 / 2) / 100_000 = 0.02
        impact_p, price = get_trade_price_impact(Decimal("100"), True, 1000, 2000, 100_000)
        assert impact_p == Decimal("0.02")
        assert price == Decimal("102")

    def test_short_sells_below(self) -> None:
        impact_p, price = get_trade_price_impact(Decimal("100"), False, 1000, 2000, 100_000)
        assert impact_p == Decimal("0.02")
        assert price == Decimal("98")

    def test_half_of_odd_trade_size_floors(self) -> None:
        # 2001 // 2 = 1000
        impact_p, _ = get_trade_price_impact(Decimal("100"), True, 0, 2001, 100_000)
        assert impact_p == Decimal("0.01")

    def test_short_price_floors_at_zero(self) -> None:
        _, price = get_trade_price_impact(Decimal("100"), False, 300_000, 0, 100_000)
        assert price == 0
