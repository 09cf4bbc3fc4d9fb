"""End-to-end trade lifecycle tests through the engine.

Reference trade: 10_000_000 uusdc at 10x long on BTC-USD at 100.
  Opening fees:  gov 30_000 (x2) + trigger 20_000 = 80_000
  Live collateral: 9_920_000, live position: 99_200_000
  Closing fee:   99_200_000 * 0.0006 = 59_520 (half vault, half staking)
"""

from decimal import Decimal

import pytest

from perp.commands import (
    CancelOpenOrder,
    CloseTradeMarket,
    OpenTrade,
    SetBorrowingPairParams,
    SetFeeTiers,
    SetOiWindowsSettings,
    SetOpenInterestCaps,
    SetPairCustomMaxLeverage,
    SetPairDepths,
    SetTradingActivated,
    TriggerOrder,
    UpdateOpenOrder,
    UpdateStopLoss,
    UpdateTakeProfit,
)
from perp.exceptions import (
    ExposureLimitReached,
    InsufficientCollateral,
    InvalidLeverage,
    InvalidSlippage,
    InvalidTpSl,
    InvalidTradeType,
    InvalidTrigger,
    MaxPendingOrders,
    MaxTradesPerPair,
    OperationsHalted,
    PriceImpactTooHigh,
    TradeAlreadyClosed,
    TradeNotFound,
)
from perp.fees import FeeTier
from perp.models import PendingOrderType, TradeType, TradingActivated, Transfer
from perp.price_impact import PairDepth

DENOM = "uusdc"
STAKING = "staking"


def _limit_order(price: str, trade_type: TradeType = TradeType.LIMIT) -> OpenTrade:
    return OpenTrade(
        pair_index=0,
        collateral_index=0,
        collateral_amount=10_000_000,
        leverage=Decimal("10"),
        long=True,
        max_slippage_p=Decimal("0.01"),
        trade_type=trade_type,
        open_price=Decimal(price),
    )


class TestMarketOpen:
    def test_registers_trade_and_charges_fees(self, venue, open_market) -> None:
        result = open_market()
        engine = venue.engine

        trade = engine.lifecycle.get_trade("alice", 0, 0)
        assert trade.collateral_amount == 9_920_000
        assert trade.open_price == Decimal("100")
        assert trade.is_open
        # unset tp/sl clamped to +900% / -75%
        assert trade.tp == Decimal("190")
        assert trade.sl == Decimal("92.5")

        assert engine.borrowing.get_pair_oi(0, 0).long == 99_200_000
        assert engine.ledger.pending_gov_fees(0) == 30_000
        assert result.transfers == [Transfer(STAKING, DENOM, 50_000)]

    def test_records_price_impact_window(self, venue, open_market) -> None:
        open_market()
        trade = venue.engine.lifecycle.get_trade("alice", 0, 0)
        info = venue.engine.lifecycle.get_trade_info(trade)

        assert info.last_oi_update_ts == 1_000
        assert info.last_window_oi_usd == 99_200_000

    def test_slots_fill_in_order(self, open_market) -> None:
        indexes = [open_market().attributes["index"] for _ in range(3)]
        assert indexes == ["0", "1", "2"]

        with pytest.raises(MaxTradesPerPair):
            open_market()

    def test_closed_slot_is_reused(self, venue, open_market, make_env) -> None:
        open_market()
        open_market()
        venue.engine.execute(CloseTradeMarket(0, 0), make_env())

        assert open_market().attributes["index"] == "0"

    def test_previous_day_volume_discounts_fees(self, venue, open_market, make_env) -> None:
        venue.engine.execute(
            SetFeeTiers([FeeTier(Decimal("0.5"), 1_000)]), make_env(sender="admin")
        )
        open_market()
        open_market(env=make_env(height=2, time=86_400 + 1_000))

        # Day 0 volume of 100_000_000 reaches the tier: 15_000 x2 + 10_000
        trade = venue.engine.lifecycle.get_trade("alice", 0, 1)
        assert trade.collateral_amount == 9_960_000
        assert venue.engine.fee_tiers.get_trader_daily_info("alice", 1).points == 100_000_000


class TestOpenValidation:
    def test_leverage_outside_group(self, open_market) -> None:
        with pytest.raises(InvalidLeverage):
            open_market(leverage=Decimal("200"))

    def test_pair_custom_max_leverage(self, venue, open_market, make_env) -> None:
        venue.engine.execute(SetPairCustomMaxLeverage(0, Decimal("50")), make_env(sender="admin"))
        with pytest.raises(InvalidLeverage):
            open_market(leverage=Decimal("60"))

    def test_collateral_below_min_fee_multiple(self, open_market) -> None:
        # 3_000 * 10 / 10 = 3_000 < 5 * 800
        with pytest.raises(InsufficientCollateral):
            open_market(collateral_amount=3_000)

    def test_slippage_against_expected_price(self, open_market) -> None:
        with pytest.raises(InvalidSlippage):
            open_market(open_price=Decimal("98"))

    def test_tp_on_wrong_side(self, open_market) -> None:
        with pytest.raises(InvalidTpSl):
            open_market(tp=Decimal("99"))

    def test_pair_exposure_cap(self, venue, open_market, make_env) -> None:
        venue.engine.execute(
            SetOpenInterestCaps(0, pair_caps={0: 50_000_000}), make_env(sender="admin")
        )
        with pytest.raises(ExposureLimitReached):
            open_market()
        assert venue.engine.borrowing.get_pair_oi(0, 0).long == 0

    def test_price_impact_applied(self, venue, open_market, make_env) -> None:
        venue.engine.execute(
            SetPairDepths({0: PairDepth(10_000_000_000, 10_000_000_000)}),
            make_env(sender="admin"),
        )
        result = open_market()
        # (100_000_000 / 2) / 10_000_000_000 = 0.005
        assert Decimal(result.attributes["price_impact_p"]) == Decimal("0.005")
        assert venue.engine.lifecycle.get_trade("alice", 0, 0).open_price == Decimal("100.5")

    def test_no_price_impact_without_windows(self, venue, open_market, make_env) -> None:
        admin = make_env(sender="admin")
        venue.engine.execute(
            SetPairDepths({0: PairDepth(10_000_000_000, 10_000_000_000)}), admin
        )
        venue.engine.execute(
            SetOiWindowsSettings(windows_duration=0, windows_count=0, start_ts=0), admin
        )
        result = open_market()

        assert Decimal(result.attributes["price_impact_p"]) == 0
        assert venue.engine.lifecycle.get_trade("alice", 0, 0).open_price == Decimal("100")

    def test_price_impact_too_high(self, venue, open_market, make_env) -> None:
        venue.engine.execute(
            SetPairDepths({0: PairDepth(1_000_000_000, 1_000_000_000)}),
            make_env(sender="admin"),
        )
        # 0.05 impact * 10x = 0.5 > 0.4
        with pytest.raises(PriceImpactTooHigh):
            open_market(max_slippage_p=Decimal("0.1"))

    def test_close_only_blocks_opening(self, venue, open_market, make_env) -> None:
        venue.engine.execute(
            SetTradingActivated(TradingActivated.CLOSE_ONLY), make_env(sender="admin")
        )
        with pytest.raises(OperationsHalted):
            open_market()


class TestMarketClose:
    def test_round_trip_at_same_price(self, venue, open_market, make_env) -> None:
        """Trader gets collateral minus opening and closing fees back."""
        open_market()
        result = venue.engine.execute(CloseTradeMarket(0, 0), make_env(height=2))

        # 10_000_000 - 80_000 - 59_520
        assert result.transfers == [
            Transfer("alice", DENOM, 9_860_480),
            Transfer(STAKING, DENOM, 29_760),
        ]
        assert venue.engine.borrowing.get_pair_oi(0, 0).long == 0
        # vault keeps its share of the closing fee
        assert venue.engine.ledger.vault_balance(0) == 1_000_000_000 + 29_760

        with pytest.raises(TradeAlreadyClosed):
            venue.engine.lifecycle.get_trade("alice", 0, 0)

    def test_close_twice_fails(self, venue, open_market, make_env) -> None:
        open_market()
        venue.engine.execute(CloseTradeMarket(0, 0), make_env())
        with pytest.raises(TradeAlreadyClosed):
            venue.engine.execute(CloseTradeMarket(0, 0), make_env())

    def test_unknown_trade(self, venue, make_env) -> None:
        with pytest.raises(TradeNotFound):
            venue.engine.execute(CloseTradeMarket(0, 0), make_env())

    def test_close_allowed_when_close_only(self, venue, open_market, make_env) -> None:
        open_market()
        venue.engine.execute(
            SetTradingActivated(TradingActivated.CLOSE_ONLY), make_env(sender="admin")
        )
        venue.engine.execute(CloseTradeMarket(0, 0), make_env())

    def test_paused_blocks_close(self, venue, open_market, make_env) -> None:
        open_market()
        venue.engine.execute(
            SetTradingActivated(TradingActivated.PAUSED), make_env(sender="admin")
        )
        with pytest.raises(OperationsHalted):
            venue.engine.execute(CloseTradeMarket(0, 0), make_env())


class TestTriggeredCloses:
    def test_take_profit(self, venue, open_market, make_env) -> None:
        open_market(tp=Decimal("110"))
        venue.oracle.set_price(0, Decimal("111"))

        result = venue.engine.execute(
            TriggerOrder(PendingOrderType.TP_CLOSE, "alice", 0, 0), make_env(sender="bob")
        )

        # executes at the tp level: +100%
        assert Decimal(result.attributes["price"]) == Decimal("110")
        # 9_920_000 * 2 - 59_520
        assert Transfer("alice", DENOM, 19_780_480) in result.transfers
        # reward 99_200_000 * 0.0002 * 0.2 comes out of the staking share
        assert Transfer("bob", DENOM, 3_968) in result.transfers
        assert Transfer(STAKING, DENOM, 25_792) in result.transfers
        assert venue.engine.ledger.vault_balance(0) == 1_000_000_000 - 9_890_240

    def test_trigger_not_reached(self, venue, open_market, make_env) -> None:
        open_market()
        with pytest.raises(InvalidTrigger):
            venue.engine.execute(
                TriggerOrder(PendingOrderType.TP_CLOSE, "alice", 0, 0), make_env(sender="bob")
            )
        assert venue.engine.lifecycle.get_trade("alice", 0, 0).is_open

    def test_liquidation_behind_stop_loss_closes_as_sl(
        self, venue, open_market, make_env
    ) -> None:
        """Default sl 92.5 sits above the liquidation price 91.08."""
        open_market()
        venue.oracle.set_price(0, Decimal("91"))

        result = venue.engine.execute(
            TriggerOrder(PendingOrderType.LIQ_CLOSE, "alice", 0, 0), make_env(sender="bob")
        )

        assert result.attributes["order_type"] == "sl_close"
        assert Decimal(result.attributes["price"]) == Decimal("92.5")
        # 9_920_000 - 7_440_000 - 59_520
        assert Transfer("alice", DENOM, 2_420_480) in result.transfers

    def test_liquidation(self, venue, open_market, make_env) -> None:
        """Borrowing fees pull the liquidation price above the stop loss."""
        venue.engine.execute(
            SetBorrowingPairParams(0, 0, None, Decimal("0.004"), 1, 198_400_000),
            make_env(sender="admin"),
        )
        open_market()

        # 10 blocks at utilization 0.5: fee_p 0.02, fee 1_984_000
        # liq distance 100 * (8_928_000 - 79_360 - 1_984_000) / 9_920_000 / 10 = 6.92
        trade = venue.engine.lifecycle.get_trade("alice", 0, 0)
        assert venue.engine.lifecycle.get_trade_liquidation_price(trade, 11) == Decimal("93.08")

        venue.oracle.set_price(0, Decimal("93"))
        result = venue.engine.execute(
            TriggerOrder(PendingOrderType.LIQ_CLOSE, "alice", 0, 0),
            make_env(height=11, sender="bob"),
        )

        assert result.attributes["order_type"] == "liq_close"
        assert all(t.recipient != "alice" for t in result.transfers)
        # liq fee 9_920_000 * 0.05 = 496_000; staking half minus reward 3_968
        assert result.transfers == [
            Transfer(STAKING, DENOM, 244_032),
            Transfer("bob", DENOM, 3_968),
        ]
        assert venue.engine.ledger.vault_balance(0) == 1_000_000_000 + 9_672_000


class TestPendingOrders:
    def test_limit_order_stored_without_fees(self, venue, make_env) -> None:
        result = venue.engine.execute(_limit_order("96"), make_env())

        assert result.transfers == []
        trade = venue.engine.lifecycle.get_trade("alice", 0, 0)
        assert trade.trade_type == TradeType.LIMIT
        assert trade.collateral_amount == 10_000_000
        assert venue.engine.borrowing.get_pair_oi(0, 0).long == 0

    def test_limit_order_triggers(self, venue, make_env) -> None:
        venue.engine.execute(_limit_order("96"), make_env())

        venue.oracle.set_price(0, Decimal("97"))
        with pytest.raises(InvalidTrigger):
            venue.engine.execute(
                TriggerOrder(PendingOrderType.LIMIT_OPEN, "alice", 0, 0),
                make_env(height=2, sender="bob"),
            )

        venue.oracle.set_price(0, Decimal("95"))
        result = venue.engine.execute(
            TriggerOrder(PendingOrderType.LIMIT_OPEN, "alice", 0, 0),
            make_env(height=2, sender="bob"),
        )

        trade = venue.engine.lifecycle.get_trade("alice", 0, 0)
        assert trade.trade_type == TradeType.MARKET
        assert trade.open_price == Decimal("95")
        assert trade.collateral_amount == 9_920_000
        assert result.transfers == [
            Transfer(STAKING, DENOM, 46_000),
            Transfer("bob", DENOM, 4_000),
        ]
        assert venue.engine.borrowing.get_pair_oi(0, 0).long == 99_200_000

    def test_stop_order_triggers_at_or_worse(self, venue, make_env) -> None:
        venue.engine.execute(_limit_order("105", TradeType.STOP), make_env())
        venue.oracle.set_price(0, Decimal("105"))

        result = venue.engine.execute(
            TriggerOrder(PendingOrderType.STOP_OPEN, "alice", 0, 0), make_env(sender="bob")
        )
        assert Decimal(result.attributes["open_price"]) == Decimal("105")

    def test_wrong_trigger_kind(self, venue, make_env) -> None:
        venue.engine.execute(_limit_order("96"), make_env())
        venue.oracle.set_price(0, Decimal("95"))
        with pytest.raises(InvalidTradeType):
            venue.engine.execute(
                TriggerOrder(PendingOrderType.STOP_OPEN, "alice", 0, 0), make_env(sender="bob")
            )

    def test_pending_order_cap(self, venue, make_env) -> None:
        for _ in range(3):
            venue.engine.execute(_limit_order("96"), make_env())
        with pytest.raises(MaxPendingOrders):
            venue.engine.execute(_limit_order("96"), make_env())

    def test_cancel_refunds_collateral(self, venue, make_env) -> None:
        venue.engine.execute(_limit_order("96"), make_env())
        result = venue.engine.execute(CancelOpenOrder(0, 0), make_env())

        assert result.transfers == [Transfer("alice", DENOM, 10_000_000)]
        with pytest.raises(TradeAlreadyClosed):
            venue.engine.lifecycle.get_trade("alice", 0, 0)

    def test_update_open_order(self, venue, make_env) -> None:
        venue.engine.execute(_limit_order("96"), make_env())
        venue.engine.execute(
            UpdateOpenOrder(0, 0, Decimal("94"), Decimal("120"), Decimal("90"), Decimal("0.02")),
            make_env(height=3),
        )

        trade = venue.engine.lifecycle.get_trade("alice", 0, 0)
        info = venue.engine.lifecycle.get_trade_info(trade)
        assert (trade.open_price, trade.tp, trade.sl) == (
            Decimal("94"),
            Decimal("120"),
            Decimal("90"),
        )
        assert info.max_slippage_p == Decimal("0.02")
        assert info.tp_last_updated_block == 3

    def test_cannot_cancel_live_trade(self, venue, open_market, make_env) -> None:
        open_market()
        with pytest.raises(InvalidTradeType):
            venue.engine.execute(CancelOpenOrder(0, 0), make_env())


class TestTpSlUpdates:
    def test_update_tp(self, venue, open_market, make_env) -> None:
        open_market()
        venue.engine.execute(UpdateTakeProfit(0, 0, Decimal("120")), make_env(height=5))

        trade = venue.engine.lifecycle.get_trade("alice", 0, 0)
        assert trade.tp == Decimal("120")
        assert venue.engine.lifecycle.get_trade_info(trade).tp_last_updated_block == 5

    def test_zero_tp_clamped(self, venue, open_market, make_env) -> None:
        open_market(tp=Decimal("120"))
        venue.engine.execute(UpdateTakeProfit(0, 0, Decimal("0")), make_env())
        assert venue.engine.lifecycle.get_trade("alice", 0, 0).tp == Decimal("190")

    def test_update_sl(self, venue, open_market, make_env) -> None:
        open_market()
        venue.engine.execute(UpdateStopLoss(0, 0, Decimal("95")), make_env())
        assert venue.engine.lifecycle.get_trade("alice", 0, 0).sl == Decimal("95")

    def test_sl_on_wrong_side(self, venue, open_market, make_env) -> None:
        open_market()
        with pytest.raises(InvalidTpSl):
            venue.engine.execute(UpdateStopLoss(0, 0, Decimal("105")), make_env())
