"""Tests for read-only trade checks."""

from decimal import Decimal

import pytest

from perp.exceptions import (
    InsufficientCollateral,
    InvalidLeverage,
    InvalidSlippage,
    InvalidTpSl,
    InvalidTrigger,
    OperationsHalted,
    PriceImpactTooHigh,
)
from perp.models import Fee, Group, PendingOrderType, Trade, TradeType, TradingActivated
from perp.trading import validation


def _trade(long: bool = True, **kwargs) -> Trade:
    params = {
        "user": "alice",
        "pair_index": 0,
        "index": 0,
        "collateral_index": 0,
        "collateral_amount": 1000,
        "leverage": Decimal("10"),
        "long": long,
        "is_open": True,
        "open_price": Decimal("100"),
    }
    params.update(kwargs)
    return Trade(**params)


class TestActivation:
    def test_close_only_blocks_opening(self) -> None:
        with pytest.raises(OperationsHalted):
            validation.check_can_open(TradingActivated.CLOSE_ONLY)
        validation.check_can_operate(TradingActivated.CLOSE_ONLY)

    def test_paused_blocks_everything(self) -> None:
        with pytest.raises(OperationsHalted):
            validation.check_can_operate(TradingActivated.PAUSED)


class TestLeverage:
    group = Group("crypto", Decimal("2"), Decimal("100"))

    @pytest.mark.parametrize("leverage", [Decimal("1.9"), Decimal("101")])
    def test_outside_group_bounds(self, leverage: Decimal) -> None:
        with pytest.raises(InvalidLeverage):
            validation.validate_leverage(leverage, self.group, None)

    def test_custom_max(self) -> None:
        validation.validate_leverage(Decimal("50"), self.group, Decimal("50"))
        with pytest.raises(InvalidLeverage):
            validation.validate_leverage(Decimal("51"), self.group, Decimal("50"))


class TestMinCollateral:
    fee = Fee(
        name="crypto",
        open_fee_p=Decimal("0.0003"),
        close_fee_p=Decimal("0.0006"),
        oracle_fee_p=Decimal("0"),
        trigger_order_fee_p=Decimal("0.0002"),
        min_position_size_usd=1_000_000,
    )

    def test_min_fee(self) -> None:
        # 1_000_000 * (0.0003 * 2 + 0.0002)
        assert self.fee.min_fee_usd == 800

    def test_enough(self) -> None:
        # 40_000 / 10 = 4_000 = 5 * 800
        validation.validate_min_collateral(40_000, Decimal("10"), self.fee, Decimal("5"))

    def test_too_little(self) -> None:
        with pytest.raises(InsufficientCollateral):
            validation.validate_min_collateral(39_990, Decimal("10"), self.fee, Decimal("5"))


class TestTpSl:
    def test_long_sides(self) -> None:
        validation.validate_tp_sl(_trade(tp=Decimal("110"), sl=Decimal("95")), Decimal("100"))
        with pytest.raises(InvalidTpSl):
            validation.validate_tp_sl(_trade(tp=Decimal("99")), Decimal("100"))
        with pytest.raises(InvalidTpSl):
            validation.validate_tp_sl(_trade(sl=Decimal("100")), Decimal("100"))

    def test_short_sides(self) -> None:
        validation.validate_tp_sl(
            _trade(long=False, tp=Decimal("90"), sl=Decimal("105")), Decimal("100")
        )
        with pytest.raises(InvalidTpSl):
            validation.validate_tp_sl(_trade(long=False, tp=Decimal("101")), Decimal("100"))

    def test_zero_means_unset(self) -> None:
        validation.validate_tp_sl(_trade(), Decimal("100"))


class TestSlippage:
    def test_long_limit(self) -> None:
        validation.validate_slippage(Decimal("101"), Decimal("100"), True, Decimal("0.01"))
        with pytest.raises(InvalidSlippage):
            validation.validate_slippage(Decimal("101.01"), Decimal("100"), True, Decimal("0.01"))

    def test_short_limit(self) -> None:
        validation.validate_slippage(Decimal("99"), Decimal("100"), False, Decimal("0.01"))
        with pytest.raises(InvalidSlippage):
            validation.validate_slippage(Decimal("98.99"), Decimal("100"), False, Decimal("0.01"))


class TestPriceImpactCap:
    def test_cap(self) -> None:
        validation.validate_price_impact(Decimal("0.04"), Decimal("10"), Decimal("0.4"))
        with pytest.raises(PriceImpactTooHigh):
            validation.validate_price_impact(Decimal("0.05"), Decimal("10"), Decimal("0.4"))


class TestOpenTrigger:
    @pytest.mark.parametrize(
        "order_type, long, price, hit",
        [
            (PendingOrderType.LIMIT_OPEN, True, Decimal("99"), True),
            (PendingOrderType.LIMIT_OPEN, True, Decimal("101"), False),
            (PendingOrderType.LIMIT_OPEN, False, Decimal("101"), True),
            (PendingOrderType.STOP_OPEN, True, Decimal("101"), True),
            (PendingOrderType.STOP_OPEN, True, Decimal("99"), False),
            (PendingOrderType.STOP_OPEN, False, Decimal("99"), True),
        ],
    )
    def test_levels(
        self, order_type: PendingOrderType, long: bool, price: Decimal, hit: bool
    ) -> None:
        trade = _trade(long=long, trade_type=TradeType.LIMIT)
        if hit:
            validation.check_open_trigger(order_type, trade, price)
        else:
            with pytest.raises(InvalidTrigger):
                validation.check_open_trigger(order_type, trade, price)


class TestCloseTrigger:
    def test_tp_returns_level(self) -> None:
        trade = _trade(tp=Decimal("110"), sl=Decimal("95"))
        assert validation.check_close_trigger(
            PendingOrderType.TP_CLOSE, trade, Decimal("111"), Decimal("91")
        ) == Decimal("110")

    def test_sl_not_reached(self) -> None:
        trade = _trade(tp=Decimal("110"), sl=Decimal("95"))
        with pytest.raises(InvalidTrigger):
            validation.check_close_trigger(
                PendingOrderType.SL_CLOSE, trade, Decimal("96"), Decimal("91")
            )

    def test_liquidation_short(self) -> None:
        trade = _trade(long=False)
        assert validation.check_close_trigger(
            PendingOrderType.LIQ_CLOSE, trade, Decimal("110"), Decimal("109")
        ) == Decimal("109")

    def test_unset_tp_never_fires(self) -> None:
        with pytest.raises(InvalidTrigger):
            validation.check_close_trigger(
                PendingOrderType.TP_CLOSE, _trade(), Decimal("1000"), Decimal("91")
            )


class TestSlBeforeLiquidation:
    def test_long(self) -> None:
        assert validation.sl_fires_before_liquidation(_trade(sl=Decimal("92.5")), Decimal("91"))
        assert not validation.sl_fires_before_liquidation(_trade(sl=Decimal("90")), Decimal("91"))

    def test_short(self) -> None:
        trade = _trade(long=False, sl=Decimal("107.5"))
        assert validation.sl_fires_before_liquidation(trade, Decimal("109"))

    def test_no_sl(self) -> None:
        assert not validation.sl_fires_before_liquidation(_trade(), Decimal("91"))
