"""Trade lifecycle: open, register, trigger, update and close.

Trade flow:
1. open_trade validates a request (read-only). Market trades are registered
   immediately; limit/stop orders are stored as pending with no open
   interest and no fees.
2. register_trade charges opening fees, clamps tp/sl and adds the trade's
   open interest to the borrowing and price impact engines.
3. trigger_order converts a pending order once its price is reached, or
   closes a live trade on take profit, stop loss or liquidation.
4. The close path retires open interest, charges borrowing and closing fees,
   settles PnL against the vault and emits transfers.

Every method validates before its first write. Atomicity of the writes is
provided by the caller's storage transaction.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING

from perp.config import AppSettings
from perp.exceptions import (
    ExposureLimitReached,
    InsufficientCollateral,
    InvalidTradeType,
    MaxPendingOrders,
    MaxTradesPerPair,
    TradeAlreadyClosed,
    TradeNotFound,
)
from perp.fees import compute_closing_fees, compute_opening_fees, split_closing_fee
from perp.fees.distribution import TierFn, get_position_size_collateral_basis
from perp.fixed_point import fixed, mul_floor, to_int_floor
from perp.logging import get_logger
from perp.models import (
    CommandResult,
    Env,
    PendingOrderType,
    Trade,
    TradeInfo,
    TradeType,
    TradingActivated,
    Transfer,
)
from perp.oracle import require_price
from perp.storage import SINGLETON, Table
from perp.trading import validation
from perp.trading.liquidation import get_trade_liquidation_price, get_trade_value
from perp.trading.pnl import (
    get_market_execution_price,
    get_pnl_percent,
    limit_sl_distance,
    limit_tp_distance,
)

if TYPE_CHECKING:
    from perp.borrowing import BorrowingEngine
    from perp.fees import FeeTierRegistry
    from perp.ledger import Ledger
    from perp.oracle import PriceOracle
    from perp.pairs import PairRegistry
    from perp.price_impact import PriceImpactEngine
    from perp.storage import Storage

logger = get_logger(__name__)

_OPEN_ORDER_TYPES = {
    TradeType.MARKET: PendingOrderType.MARKET,
    TradeType.LIMIT: PendingOrderType.LIMIT_OPEN,
    TradeType.STOP: PendingOrderType.STOP_OPEN,
}


class TradeLifecycle:
    """State machine driving trades from request to settlement.

    Args:
        storage: Keyed storage holding trades and trade infos.
        oracle: Asset and collateral price source.
        borrowing: Borrowing fee engine.
        price_impact: Price impact engine.
        pairs: Pair, group, fee and collateral configuration.
        fee_tiers: Trader fee tier registry.
        ledger: Governance fee and vault balances.
        settings: Application settings (trading limits, fee splits).
    """

    def __init__(
        self,
        storage: Storage,
        oracle: PriceOracle,
        borrowing: BorrowingEngine,
        price_impact: PriceImpactEngine,
        pairs: PairRegistry,
        fee_tiers: FeeTierRegistry,
        ledger: Ledger,
        settings: AppSettings | None = None,
    ) -> None:
        self._storage = storage
        self._oracle = oracle
        self._borrowing = borrowing
        self._price_impact = price_impact
        self._pairs = pairs
        self._fee_tiers = fee_tiers
        self._ledger = ledger
        self._settings = settings or AppSettings()

    # ──────────────────────────────────────────────
    # Reads
    # ──────────────────────────────────────────────

    def get_trading_activated(self) -> TradingActivated:
        return self._storage.may_load(
            Table.TRADING_ACTIVATED, SINGLETON, TradingActivated.ACTIVATED
        )

    def get_trade(self, user: str, pair_index: int, index: int) -> Trade:
        """Load an open trade or pending order.

        Raises:
            TradeNotFound: If no trade was ever stored under the key.
            TradeAlreadyClosed: If the trade has been closed or cancelled.
        """
        trade = self._storage.get(Table.TRADES, (user, pair_index, index))
        if trade is None:
            raise TradeNotFound(f"No trade {index} for {user} on pair {pair_index}")
        if not trade.is_open:
            raise TradeAlreadyClosed(f"Trade {index} for {user} on pair {pair_index} is closed")
        return trade

    def get_trade_info(self, trade: Trade) -> TradeInfo:
        return self._storage.load(Table.TRADE_INFOS, trade.key)

    def get_trade_liquidation_price(self, trade: Trade, height: int) -> Decimal:
        """Liquidation price including closing and accrued borrowing fees."""
        pair = self._pairs.get_pair(trade.pair_index)
        fee = self._pairs.get_fee(pair.fee_index)
        collateral_price = self._collateral_price(trade.collateral_index)

        basis = get_position_size_collateral_basis(
            trade.position_size_collateral, fee.min_position_size_usd, collateral_price
        )
        closing_fees = mul_floor(basis, fee.close_fee_p + fee.trigger_order_fee_p)
        borrowing_fee = self._borrowing.get_trade_borrowing_fee(trade, height)

        return get_trade_liquidation_price(
            trade.open_price,
            trade.long,
            trade.collateral_amount,
            trade.leverage,
            closing_fees + borrowing_fee,
            self._settings.trading.liq_threshold_p,
        )

    # ──────────────────────────────────────────────
    # Open
    # ──────────────────────────────────────────────

    def open_trade(self, trade: Trade, max_slippage_p: Decimal, env: Env) -> CommandResult:
        """Validate a trade request and open it or store it as a pending order.

        For market trades, a nonzero ``trade.open_price`` is the price the
        trader expects; slippage is measured against it.

        Raises:
            OperationsHalted: If opening is disabled.
            PairNotFound: If the pair is not configured.
            PriceUnavailableError: If the oracle has no price.
            InvalidLeverage, InsufficientCollateral, InvalidTpSl,
            InvalidSlippage, ExposureLimitReached, PriceImpactTooHigh,
            MaxTradesPerPair, MaxPendingOrders: On failed validation.
        """
        validation.check_can_open(self.get_trading_activated())
        order_type = _OPEN_ORDER_TYPES[trade.trade_type]
        trading = self._settings.trading

        # 1. Configuration and prices
        pair = self._pairs.get_pair(trade.pair_index)
        group = self._pairs.get_group(pair.group_index)
        fee = self._pairs.get_fee(pair.fee_index)
        self._pairs.get_collateral(trade.collateral_index)

        base_price = require_price(self._oracle.get_price(pair.oracle_index), pair.name)
        collateral_price = self._collateral_price(trade.collateral_index)

        # 2. Size and leverage
        if trade.collateral_amount <= 0:
            raise InsufficientCollateral("Collateral must be positive")
        validation.validate_leverage(
            trade.leverage, group, self._pairs.get_pair_custom_max_leverage(trade.pair_index)
        )
        position_size_collateral = trade.position_size_collateral
        position_size_usd = mul_floor(position_size_collateral, collateral_price)
        validation.validate_min_collateral(
            position_size_usd, trade.leverage, fee, trading.min_collateral_fee_multiple
        )

        # 3. Trade slot
        trade = replace(trade, index=self._free_trade_index(trade, order_type))

        trade_info = TradeInfo(
            created_block=env.height,
            tp_last_updated_block=env.height,
            sl_last_updated_block=env.height,
            max_slippage_p=max_slippage_p,
            collateral_price_usd=collateral_price,
        )

        if order_type.is_open:
            return self._store_pending_order(trade, trade_info)

        # 4. Market execution
        price_impact_p, price_after_impact = self.validate_trade(
            trade, position_size_usd, base_price, max_slippage_p, env.time
        )
        trade = replace(trade, open_price=price_after_impact)
        transfers = self.register_trade(
            trade, trade_info, order_type, collateral_price, env
        )

        return CommandResult(
            action="open_trade",
            transfers=transfers,
            attributes={
                "user": trade.user,
                "pair_index": str(trade.pair_index),
                "index": str(trade.index),
                "open_price": str(trade.open_price),
                "price_impact_p": str(price_impact_p),
            },
        )

    def validate_trade(
        self,
        trade: Trade,
        position_size_usd: int,
        oracle_price: Decimal,
        max_slippage_p: Decimal,
        now: int,
    ) -> tuple[Decimal, Decimal]:
        """Market checks: slippage, tp/sl side, exposure caps and price impact.

        Returns:
            (price_impact_p, price_after_impact)
        """
        pair = self._pairs.get_pair(trade.pair_index)
        trading = self._settings.trading

        execution_price = get_market_execution_price(oracle_price, pair.spread_p, trade.long)
        price_impact_p, price_after_impact = self._price_impact.get_trade_price_impact(
            execution_price, trade.pair_index, trade.long, position_size_usd, now
        )

        wanted_price = trade.open_price if trade.open_price != 0 else oracle_price
        validation.validate_slippage(price_after_impact, wanted_price, trade.long, max_slippage_p)
        validation.validate_tp_sl(trade, price_after_impact)

        if not self._borrowing.within_exposure_limits(
            trade.collateral_index,
            trade.pair_index,
            trade.long,
            trade.position_size_collateral,
        ):
            raise ExposureLimitReached(
                f"Position of {trade.position_size_collateral} exceeds open interest caps "
                f"on pair {trade.pair_index}"
            )

        validation.validate_price_impact(
            price_impact_p, trade.leverage, trading.max_open_negative_pnl_p
        )
        return price_impact_p, price_after_impact

    def register_trade(
        self,
        trade: Trade,
        trade_info: TradeInfo,
        order_type: PendingOrderType,
        collateral_price: Decimal,
        env: Env,
    ) -> list[Transfer]:
        """Charge opening fees and make a validated trade live.

        Returns:
            Transfers for the staking share and, for triggered orders, the
            trigger reward to ``env.sender``.
        """
        pair = self._pairs.get_pair(trade.pair_index)
        fee = self._pairs.get_fee(pair.fee_index)
        denom = self._pairs.get_collateral(trade.collateral_index).denom

        # 1. Fees on the requested size
        position_size_collateral = trade.position_size_collateral
        fees = compute_opening_fees(
            position_size_collateral,
            collateral_price,
            fee,
            order_type,
            self._tier_fn(trade.user, env.time),
            self._settings.fees.trigger_reward_p,
        )
        if fees.total >= trade.collateral_amount:
            raise InsufficientCollateral(
                f"Opening fees {fees.total} consume collateral {trade.collateral_amount}"
            )

        # 2. Points on the requested size
        self._fee_tiers.update_trader_points(
            trade.user, mul_floor(position_size_collateral, collateral_price), env.time
        )

        trade = replace(
            trade,
            collateral_amount=trade.collateral_amount - fees.total,
            trade_type=TradeType.MARKET,
            is_open=True,
        )
        trade = replace(
            trade,
            tp=limit_tp_distance(
                trade.open_price, trade.leverage, trade.tp, trade.long,
                self._settings.trading.max_pnl_p,
            ),
            sl=limit_sl_distance(
                trade.open_price, trade.leverage, trade.sl, trade.long,
                self._settings.trading.max_sl_p,
            ),
        )
        self._ledger.add_gov_fees(trade.collateral_index, fees.gov_fee)

        # 3. Open interest on the live size
        live_position_collateral = trade.position_size_collateral
        self._borrowing.handle_trade_borrowing(
            trade, live_position_collateral, open=True, height=env.height
        )
        trade_info = self._price_impact.add_price_impact_open_interest(
            trade, trade_info, live_position_collateral, collateral_price, env.time
        )

        # 4. Persist
        self._storage.set(Table.TRADES, trade.key, trade)
        self._storage.set(Table.TRADE_INFOS, trade.key, trade_info)

        logger.info(
            "trade_registered",
            user=trade.user,
            pair_index=trade.pair_index,
            index=trade.index,
            long=trade.long,
            order_type=order_type.value,
            open_price=str(trade.open_price),
            collateral=trade.collateral_amount,
            leverage=str(trade.leverage),
            opening_fees=fees.total,
        )

        transfers = [Transfer(self._settings.staking_address, denom, fees.staking_fee)]
        if fees.trigger_reward:
            transfers.append(Transfer(env.sender, denom, fees.trigger_reward))
        return [t for t in transfers if t.amount > 0]

    # ──────────────────────────────────────────────
    # Triggers and closes
    # ──────────────────────────────────────────────

    def trigger_order(
        self,
        order_type: PendingOrderType,
        user: str,
        pair_index: int,
        index: int,
        env: Env,
    ) -> CommandResult:
        """Execute a limit/stop open or a tp/sl/liquidation close.

        A liquidation whose stop loss would have fired first is executed as a
        stop loss close instead.

        Raises:
            InvalidTrigger: If the price has not crossed the order's level.
            InvalidTradeType: If the order kind does not fit the trade.
        """
        if order_type == PendingOrderType.MARKET:
            raise InvalidTradeType("Market orders cannot be triggered")

        state = self.get_trading_activated()
        if order_type.is_open:
            validation.check_can_open(state)
        else:
            validation.check_can_operate(state)

        trade = self.get_trade(user, pair_index, index)
        pair = self._pairs.get_pair(pair_index)
        price = require_price(self._oracle.get_price(pair.oracle_index), pair.name)

        if order_type.is_open:
            return self._execute_pending_order(order_type, trade, price, env)

        if trade.trade_type != TradeType.MARKET:
            raise InvalidTradeType(f"{order_type.value} needs a live trade")

        liq_price = self.get_trade_liquidation_price(trade, env.height)
        if (
            order_type == PendingOrderType.LIQ_CLOSE
            and validation.sl_fires_before_liquidation(trade, liq_price)
        ):
            logger.warning(
                "liquidation_reclassified_as_sl",
                user=user,
                pair_index=pair_index,
                index=index,
                sl=str(trade.sl),
                liq_price=str(liq_price),
            )
            order_type = PendingOrderType.SL_CLOSE

        execution_price = validation.check_close_trigger(order_type, trade, price, liq_price)
        transfers = self._close_trade(trade, order_type, execution_price, env)

        return CommandResult(
            action="trigger_order",
            transfers=transfers,
            attributes={
                "order_type": order_type.value,
                "user": user,
                "pair_index": str(pair_index),
                "index": str(index),
                "price": str(execution_price),
            },
        )

    def close_trade_market(self, user: str, pair_index: int, index: int, env: Env) -> CommandResult:
        """Close a live trade at the current oracle price."""
        validation.check_can_operate(self.get_trading_activated())
        trade = self.get_trade(user, pair_index, index)
        if trade.trade_type != TradeType.MARKET:
            raise InvalidTradeType("Pending orders are cancelled, not closed")

        pair = self._pairs.get_pair(pair_index)
        price = require_price(self._oracle.get_price(pair.oracle_index), pair.name)
        transfers = self._close_trade(trade, PendingOrderType.MARKET, price, env)

        return CommandResult(
            action="close_trade_market",
            transfers=transfers,
            attributes={
                "user": user,
                "pair_index": str(pair_index),
                "index": str(index),
                "price": str(price),
            },
        )

    # ──────────────────────────────────────────────
    # Updates
    # ──────────────────────────────────────────────

    def update_open_order(
        self,
        user: str,
        pair_index: int,
        index: int,
        price: Decimal,
        tp: Decimal,
        sl: Decimal,
        max_slippage_p: Decimal,
        env: Env,
    ) -> CommandResult:
        """Move a pending order's price, tp, sl and slippage tolerance."""
        validation.check_can_operate(self.get_trading_activated())
        trade = self._get_pending_order(user, pair_index, index)
        if price == 0:
            raise InvalidTradeType("Pending orders need an open price")

        trade = replace(trade, open_price=price, tp=tp, sl=sl)
        validation.validate_tp_sl(trade, price)

        trade_info = self.get_trade_info(trade)
        trade_info = replace(
            trade_info,
            max_slippage_p=max_slippage_p,
            tp_last_updated_block=env.height,
            sl_last_updated_block=env.height,
        )
        self._storage.set(Table.TRADES, trade.key, trade)
        self._storage.set(Table.TRADE_INFOS, trade.key, trade_info)

        logger.info(
            "open_order_updated",
            user=user,
            pair_index=pair_index,
            index=index,
            price=str(price),
            tp=str(tp),
            sl=str(sl),
        )
        return CommandResult(
            action="update_open_order",
            attributes={"user": user, "pair_index": str(pair_index), "index": str(index)},
        )

    def cancel_open_order(self, user: str, pair_index: int, index: int, env: Env) -> CommandResult:
        """Cancel a pending order and refund its full collateral."""
        validation.check_can_operate(self.get_trading_activated())
        trade = self._get_pending_order(user, pair_index, index)
        denom = self._pairs.get_collateral(trade.collateral_index).denom

        self._storage.set(Table.TRADES, trade.key, replace(trade, is_open=False))
        self._storage.delete(Table.TRADE_INFOS, trade.key)

        logger.info(
            "open_order_cancelled",
            user=user,
            pair_index=pair_index,
            index=index,
            refund=trade.collateral_amount,
        )
        return CommandResult(
            action="cancel_open_order",
            transfers=[Transfer(user, denom, trade.collateral_amount)],
            attributes={"user": user, "pair_index": str(pair_index), "index": str(index)},
        )

    def update_tp(
        self, user: str, pair_index: int, index: int, new_tp: Decimal, env: Env
    ) -> CommandResult:
        validation.check_can_operate(self.get_trading_activated())
        trade = self.get_trade(user, pair_index, index)
        validation.validate_tp_sl(replace(trade, tp=new_tp, sl=Decimal(0)), trade.open_price)

        tp = limit_tp_distance(
            trade.open_price, trade.leverage, new_tp, trade.long,
            self._settings.trading.max_pnl_p,
        )
        trade = replace(trade, tp=tp)
        trade_info = replace(self.get_trade_info(trade), tp_last_updated_block=env.height)
        self._storage.set(Table.TRADES, trade.key, trade)
        self._storage.set(Table.TRADE_INFOS, trade.key, trade_info)

        logger.info("tp_updated", user=user, pair_index=pair_index, index=index, tp=str(tp))
        return CommandResult(
            action="update_tp",
            attributes={"user": user, "index": str(index), "tp": str(tp)},
        )

    def update_sl(
        self, user: str, pair_index: int, index: int, new_sl: Decimal, env: Env
    ) -> CommandResult:
        validation.check_can_operate(self.get_trading_activated())
        trade = self.get_trade(user, pair_index, index)
        validation.validate_tp_sl(replace(trade, tp=Decimal(0), sl=new_sl), trade.open_price)

        sl = limit_sl_distance(
            trade.open_price, trade.leverage, new_sl, trade.long,
            self._settings.trading.max_sl_p,
        )
        trade = replace(trade, sl=sl)
        trade_info = replace(self.get_trade_info(trade), sl_last_updated_block=env.height)
        self._storage.set(Table.TRADES, trade.key, trade)
        self._storage.set(Table.TRADE_INFOS, trade.key, trade_info)

        logger.info("sl_updated", user=user, pair_index=pair_index, index=index, sl=str(sl))
        return CommandResult(
            action="update_sl",
            attributes={"user": user, "index": str(index), "sl": str(sl)},
        )

    # ──────────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────────

    def _store_pending_order(self, trade: Trade, trade_info: TradeInfo) -> CommandResult:
        if trade.open_price == 0:
            raise InvalidTradeType("Limit and stop orders need an open price")
        validation.validate_tp_sl(trade, trade.open_price)

        trade = replace(trade, is_open=True)
        self._storage.set(Table.TRADES, trade.key, trade)
        self._storage.set(Table.TRADE_INFOS, trade.key, trade_info)

        logger.info(
            "pending_order_stored",
            user=trade.user,
            pair_index=trade.pair_index,
            index=trade.index,
            trade_type=trade.trade_type.value,
            open_price=str(trade.open_price),
        )
        return CommandResult(
            action="open_trade",
            attributes={
                "user": trade.user,
                "pair_index": str(trade.pair_index),
                "index": str(trade.index),
                "trade_type": trade.trade_type.value,
            },
        )

    def _execute_pending_order(
        self,
        order_type: PendingOrderType,
        trade: Trade,
        price: Decimal,
        env: Env,
    ) -> CommandResult:
        if _OPEN_ORDER_TYPES[trade.trade_type] != order_type:
            raise InvalidTradeType(
                f"{order_type.value} does not match a {trade.trade_type.value} trade"
            )
        validation.check_open_trigger(order_type, trade, price)

        trade_info = self.get_trade_info(trade)
        collateral_price = self._collateral_price(trade.collateral_index)
        position_size_usd = mul_floor(trade.position_size_collateral, collateral_price)

        price_impact_p, price_after_impact = self.validate_trade(
            trade, position_size_usd, price, trade_info.max_slippage_p, env.time
        )
        trade = replace(trade, open_price=price_after_impact)
        trade_info = replace(trade_info, collateral_price_usd=collateral_price)
        transfers = self.register_trade(trade, trade_info, order_type, collateral_price, env)

        return CommandResult(
            action="trigger_order",
            transfers=transfers,
            attributes={
                "order_type": order_type.value,
                "user": trade.user,
                "pair_index": str(trade.pair_index),
                "index": str(trade.index),
                "open_price": str(price_after_impact),
                "price_impact_p": str(price_impact_p),
            },
        )

    def _close_trade(
        self,
        trade: Trade,
        order_type: PendingOrderType,
        close_price: Decimal,
        env: Env,
    ) -> list[Transfer]:
        pair = self._pairs.get_pair(trade.pair_index)
        fee = self._pairs.get_fee(pair.fee_index)
        denom = self._pairs.get_collateral(trade.collateral_index).denom
        collateral_price = self._collateral_price(trade.collateral_index)
        trade_info = self.get_trade_info(trade)
        fee_settings = self._settings.fees
        trading = self._settings.trading

        collateral = trade.collateral_amount
        position_size_collateral = trade.position_size_collateral

        # 1. Fees owed
        borrowing_fee = self._borrowing.get_trade_borrowing_fee(trade, env.height)
        closing = compute_closing_fees(
            collateral,
            position_size_collateral,
            collateral_price,
            fee,
            order_type,
            self._tier_fn(trade.user, env.time),
            fee_settings.vault_fee_p,
            fee_settings.liq_fee_p,
            fee_settings.trigger_reward_p,
        )
        self._fee_tiers.update_trader_points(
            trade.user, mul_floor(position_size_collateral, collateral_price), env.time
        )

        # 2. Retire open interest
        self._price_impact.remove_price_impact_open_interest(
            trade, trade_info, position_size_collateral, env.time
        )
        self._borrowing.handle_trade_borrowing(
            trade, position_size_collateral, open=False, height=env.height
        )

        # 3. Settlement value, fees capped by what is left
        pnl_p = get_pnl_percent(
            trade.open_price, close_price, trade.long, trade.leverage, trading.max_pnl_p
        )
        with fixed():
            available = collateral + to_int_floor(Decimal(collateral) * pnl_p)

        charged_closing_fee = min(closing.closing_fee, available)
        charged_borrowing_fee = min(borrowing_fee, available - charged_closing_fee)
        if charged_closing_fee < closing.closing_fee or charged_borrowing_fee < borrowing_fee:
            logger.warning(
                "closing_fees_waived",
                user=trade.user,
                pair_index=trade.pair_index,
                index=trade.index,
                closing_fee_waived=closing.closing_fee - charged_closing_fee,
                borrowing_fee_waived=borrowing_fee - charged_borrowing_fee,
            )
            closing = split_closing_fee(
                charged_closing_fee, closing.trigger_reward, fee_settings.vault_fee_p
            )

        if order_type == PendingOrderType.LIQ_CLOSE:
            trader_value = 0
        else:
            trader_value = get_trade_value(
                collateral,
                pnl_p,
                charged_borrowing_fee,
                charged_closing_fee,
                trading.liq_threshold_p,
            )

        # 4. Vault absorbs the rest (negative on trader profit)
        vault_delta = collateral - trader_value - closing.staking_fee - closing.trigger_reward
        self._ledger.apply_vault_delta(trade.collateral_index, vault_delta)

        # 5. Mark closed
        self._storage.set(Table.TRADES, trade.key, replace(trade, is_open=False))
        self._storage.delete(Table.TRADE_INFOS, trade.key)

        logger.info(
            "trade_closed",
            user=trade.user,
            pair_index=trade.pair_index,
            index=trade.index,
            order_type=order_type.value,
            close_price=str(close_price),
            pnl_p=str(pnl_p),
            borrowing_fee=charged_borrowing_fee,
            closing_fee=charged_closing_fee,
            trader_value=trader_value,
            vault_delta=vault_delta,
        )

        transfers = [
            Transfer(trade.user, denom, trader_value),
            Transfer(self._settings.staking_address, denom, closing.staking_fee),
            Transfer(env.sender, denom, closing.trigger_reward),
        ]
        return [t for t in transfers if t.amount > 0]

    def _get_pending_order(self, user: str, pair_index: int, index: int) -> Trade:
        trade = self.get_trade(user, pair_index, index)
        if trade.trade_type == TradeType.MARKET:
            raise InvalidTradeType("Trade is live, not a pending order")
        return trade

    def _free_trade_index(self, trade: Trade, order_type: PendingOrderType) -> int:
        """First unused slot for (user, pair). Pending orders also count toward their own cap."""
        trading = self._settings.trading
        open_trades = [
            self._storage.get(Table.TRADES, key)
            for key in self._storage.keys(Table.TRADES)
            if key[0] == trade.user and key[1] == trade.pair_index
        ]
        open_trades = [t for t in open_trades if t.is_open]

        if order_type.is_open:
            pending = sum(1 for t in open_trades if t.trade_type != TradeType.MARKET)
            if pending >= trading.max_pending_orders:
                raise MaxPendingOrders(
                    f"{trade.user} already has {pending} pending orders on pair {trade.pair_index}"
                )

        used = {t.index for t in open_trades}
        for index in range(trading.max_trades_per_pair):
            if index not in used:
                return index
        raise MaxTradesPerPair(
            f"{trade.user} has no free trade slot on pair {trade.pair_index}"
        )

    def _collateral_price(self, collateral_index: int) -> Decimal:
        return require_price(
            self._oracle.get_collateral_price(collateral_index),
            f"collateral {collateral_index}",
        )

    def _tier_fn(self, user: str, now: int) -> TierFn:
        return lambda normal_fee: self._fee_tiers.calculate_fee_amount(user, normal_fee, now)
