"""Tests for PnL percent, tp/sl clamping and spread pricing."""

from decimal import Decimal

import pytest

from perp.trading.pnl import (
    get_market_execution_price,
    get_pnl_percent,
    limit_sl_distance,
    limit_tp_distance,
)


class TestPnlPercent:
    """Leveraged PnL bounded to [-100%, +900%]."""

    @pytest.mark.parametrize(
        "current, long, expected",
        [
            (Decimal("105"), True, Decimal("0.5")),
            (Decimal("95"), True, Decimal("-0.5")),
            (Decimal("95"), False, Decimal("0.5")),
            (Decimal("105"), False, Decimal("-0.5")),
        ],
    )
    def test_direction(self, current: Decimal, long: bool, expected: Decimal) -> None:
        assert get_pnl_percent(Decimal("100"), current, long, Decimal("10")) == expected

    def test_loss_capped_at_minus_one(self) -> None:
        assert get_pnl_percent(Decimal("100"), Decimal("50"), True, Decimal("10")) == -1

    def test_gain_capped_at_max(self) -> None:
        assert get_pnl_percent(Decimal("100"), Decimal("300"), True, Decimal("10")) == 9

    def test_zero_open_price(self) -> None:
        assert get_pnl_percent(Decimal("0"), Decimal("100"), True, Decimal("10")) == 0


class TestLimitTpDistance:
    def test_zero_tp_becomes_max_gain_price(self) -> None:
        # 100 + 100 * 9 / 10
        assert limit_tp_distance(Decimal("100"), Decimal("10"), Decimal("0"), True) == Decimal("190")

    def test_too_far_tp_clamped(self) -> None:
        assert limit_tp_distance(Decimal("100"), Decimal("10"), Decimal("200"), True) == Decimal("190")

    def test_reachable_tp_kept(self) -> None:
        assert limit_tp_distance(Decimal("100"), Decimal("10"), Decimal("150"), True) == Decimal("150")

    def test_short_tp_floors_at_zero(self) -> None:
        # 100 - 100 * 9 / 2 < 0
        assert limit_tp_distance(Decimal("100"), Decimal("2"), Decimal("0"), False) == 0

    def test_short_tp(self) -> None:
        assert limit_tp_distance(Decimal("100"), Decimal("10"), Decimal("0"), False) == Decimal("10")


class TestLimitSlDistance:
    def test_zero_sl_becomes_max_loss_price(self) -> None:
        # 100 - 100 * 0.75 / 10
        assert limit_sl_distance(Decimal("100"), Decimal("10"), Decimal("0"), True) == Decimal("92.5")

    def test_too_far_sl_clamped(self) -> None:
        assert limit_sl_distance(Decimal("100"), Decimal("10"), Decimal("80"), True) == Decimal("92.5")

    def test_near_sl_kept(self) -> None:
        assert limit_sl_distance(Decimal("100"), Decimal("10"), Decimal("95"), True) == Decimal("95")

    def test_short_sl(self) -> None:
        assert limit_sl_distance(Decimal("100"), Decimal("10"), Decimal("0"), False) == Decimal("107.5")


class TestMarketExecutionPrice:
    def test_spread_against_trader(self) -> None:
        assert get_market_execution_price(Decimal("100"), Decimal("0.001"), True) == Decimal("100.1")
        assert get_market_execution_price(Decimal("100"), Decimal("0.001"), False) == Decimal("99.9")

    def test_zero_spread(self) -> None:
        assert get_market_execution_price(Decimal("100"), Decimal("0"), True) == Decimal("100")
