"""Liquidation price and settlement value.

A position is liquidated once its losses, fees included, consume
``liq_threshold_p`` of its collateral. Whatever would be left inside that
buffer is forfeited to the vault.
"""

from decimal import Decimal

from perp.config import LIQ_THRESHOLD_P
from perp.exceptions import DivisionByZeroError
from perp.fixed_point import ONE, ZERO, fixed, mul_floor, to_decimal, to_int_floor


def get_trade_liquidation_price(
    open_price: Decimal,
    long: bool,
    collateral: int,
    leverage: Decimal,
    fees_collateral: int,
    liq_threshold_p: Decimal = LIQ_THRESHOLD_P,
) -> Decimal:
    """Price at which the position's losses plus fees hit the threshold.

    Lower leverage puts the price further away. Never negative.
    """
    if collateral == 0 or leverage == 0:
        raise DivisionByZeroError("Liquidation price needs collateral and leverage")

    with fixed():
        collateral_liq_negative_pnl = liq_threshold_p * collateral
        liq_price_distance = (
            open_price * (collateral_liq_negative_pnl - fees_collateral) / collateral / leverage
        )
        liq_price = (
            open_price - liq_price_distance if long else open_price + liq_price_distance
        )
        return max(ZERO, to_decimal(liq_price, signed=True))


def get_trade_value(
    collateral: int,
    percent_profit: Decimal,
    borrowing_fee: int,
    closing_fee: int,
    liq_threshold_p: Decimal = LIQ_THRESHOLD_P,
) -> int:
    """Collateral returned to the trader on close.

    ``collateral + collateral x pnl - fees``, or zero when that falls inside
    the liquidation buffer.
    """
    with fixed():
        pnl = to_int_floor(Decimal(collateral) * percent_profit)
    value = collateral + pnl - borrowing_fee - closing_fee

    if value <= mul_floor(collateral, ONE - liq_threshold_p):
        return 0
    return value
