"""Read-only trade checks.

Each check raises the matching TradeValidationError subclass and never
touches state, so a failed request leaves nothing behind.
"""

from decimal import Decimal

from perp.exceptions import (
    InsufficientCollateral,
    InvalidLeverage,
    InvalidSlippage,
    InvalidTpSl,
    InvalidTrigger,
    OperationsHalted,
    PriceImpactTooHigh,
)
from perp.fixed_point import ONE, fixed, ratio, to_decimal
from perp.models import Fee, Group, PendingOrderType, Trade, TradingActivated


def check_can_open(state: TradingActivated) -> None:
    if state != TradingActivated.ACTIVATED:
        raise OperationsHalted(f"Opening trades is disabled ({state.value})")


def check_can_operate(state: TradingActivated) -> None:
    if state == TradingActivated.PAUSED:
        raise OperationsHalted("Trading is paused")


def validate_leverage(
    leverage: Decimal,
    group: Group,
    custom_max_leverage: Decimal | None,
) -> None:
    if leverage < group.min_leverage or leverage > group.max_leverage:
        raise InvalidLeverage(
            f"Leverage {leverage} outside [{group.min_leverage}, {group.max_leverage}]"
        )
    if custom_max_leverage is not None and leverage > custom_max_leverage:
        raise InvalidLeverage(f"Leverage {leverage} above pair max {custom_max_leverage}")


def validate_min_collateral(
    position_size_usd: int,
    leverage: Decimal,
    fee: Fee,
    min_fee_multiple: Decimal,
) -> None:
    """Collateral in USD must cover ``min_fee_multiple`` times the pair's min fee."""
    collateral_usd = ratio(position_size_usd, leverage)
    with fixed():
        required = min_fee_multiple * fee.min_fee_usd
    if collateral_usd < required:
        raise InsufficientCollateral(
            f"Collateral worth {collateral_usd} USD below required {required}"
        )


def validate_tp_sl(trade: Trade, price: Decimal) -> None:
    """Nonzero tp must be beyond ``price`` in the profit direction, sl in the loss direction."""
    if trade.tp != 0 and (trade.tp <= price if trade.long else trade.tp >= price):
        raise InvalidTpSl(f"Take profit {trade.tp} on the wrong side of {price}")
    if trade.sl != 0 and (trade.sl >= price if trade.long else trade.sl <= price):
        raise InvalidTpSl(f"Stop loss {trade.sl} on the wrong side of {price}")


def validate_slippage(
    price_after_impact: Decimal,
    wanted_price: Decimal,
    long: bool,
    max_slippage_p: Decimal,
) -> None:
    with fixed():
        if long:
            limit = to_decimal(wanted_price * (ONE + max_slippage_p))
            slipped = price_after_impact > limit
        else:
            limit = to_decimal(wanted_price * (ONE - max_slippage_p), signed=True)
            slipped = price_after_impact < limit
    if slipped:
        raise InvalidSlippage(
            f"Execution price {price_after_impact} beyond slippage limit {limit}"
        )


def validate_price_impact(
    price_impact_p: Decimal,
    leverage: Decimal,
    max_open_negative_pnl_p: Decimal,
) -> None:
    with fixed():
        negative_pnl_p = price_impact_p * leverage
    if negative_pnl_p > max_open_negative_pnl_p:
        raise PriceImpactTooHigh(
            f"Price impact {price_impact_p} x leverage {leverage} "
            f"exceeds {max_open_negative_pnl_p}"
        )


def check_open_trigger(order_type: PendingOrderType, trade: Trade, price: Decimal) -> None:
    """Limit orders fill at or better than their price, stop orders at or worse."""
    at_or_better = price <= trade.open_price if trade.long else price >= trade.open_price
    at_or_worse = price >= trade.open_price if trade.long else price <= trade.open_price

    hit = at_or_better if order_type == PendingOrderType.LIMIT_OPEN else at_or_worse
    if not hit:
        raise InvalidTrigger(
            f"{order_type.value} at {trade.open_price} not reached by price {price}"
        )


def check_close_trigger(
    order_type: PendingOrderType,
    trade: Trade,
    price: Decimal,
    liq_price: Decimal,
) -> Decimal:
    """Check a tp/sl/liquidation close and return its execution price.

    The execution price is the crossed level itself.
    """
    if order_type == PendingOrderType.TP_CLOSE:
        level = trade.tp
        hit = level != 0 and (price >= level if trade.long else price <= level)
    elif order_type == PendingOrderType.SL_CLOSE:
        level = trade.sl
        hit = level != 0 and (price <= level if trade.long else price >= level)
    else:
        level = liq_price
        hit = price <= level if trade.long else price >= level

    if not hit:
        raise InvalidTrigger(f"{order_type.value} at {level} not reached by price {price}")
    return level


def sl_fires_before_liquidation(trade: Trade, liq_price: Decimal) -> bool:
    """Whether the stop loss sits between the open price and the liquidation price."""
    if trade.sl == 0:
        return False
    return trade.sl >= liq_price if trade.long else trade.sl <= liq_price
