"""PnL, take-profit/stop-loss clamping and spread pricing.

All results are Decimals truncated to 18 digits. PnL percentages are signed
fractions of collateral: 9 = +900%, -1 = -100%.
"""

from decimal import Decimal

from perp.config import MAX_PNL_P, MAX_SL_P
from perp.fixed_point import ONE, ZERO, fixed, ratio, to_decimal


def get_pnl_percent(
    open_price: Decimal,
    current_price: Decimal,
    long: bool,
    leverage: Decimal,
    max_pnl_p: Decimal = MAX_PNL_P,
) -> Decimal:
    """Leveraged PnL of a position, bounded to [-100%, max_pnl_p].

    A zero open price (not yet executable) has zero PnL.
    """
    if open_price == 0:
        return ZERO

    with fixed():
        price_move = current_price - open_price if long else open_price - current_price
        pnl_p = to_decimal(ratio(price_move, open_price) * leverage, signed=True)

    return max(-ONE, min(pnl_p, max_pnl_p))


def limit_tp_distance(
    open_price: Decimal,
    leverage: Decimal,
    tp: Decimal,
    long: bool,
    max_pnl_p: Decimal = MAX_PNL_P,
) -> Decimal:
    """Replace a missing or too-distant take-profit with the max-gain price.

    Example: open 100, 10x long, tp 200 -> 190 (+900%).
    """
    if tp != 0 and get_pnl_percent(open_price, tp, long, leverage, max_pnl_p) != max_pnl_p:
        return tp

    with fixed():
        tp_diff = to_decimal(open_price * max_pnl_p / leverage)
        if long:
            return to_decimal(open_price + tp_diff)
        return open_price - tp_diff if tp_diff <= open_price else ZERO


def limit_sl_distance(
    open_price: Decimal,
    leverage: Decimal,
    sl: Decimal,
    long: bool,
    max_sl_p: Decimal = MAX_SL_P,
) -> Decimal:
    """Replace a missing or too-distant stop-loss with the max-loss price.

    Example: open 100, 10x long, sl 80 -> 92.5 (-75%).
    """
    if sl != 0 and get_pnl_percent(open_price, sl, long, leverage) >= -max_sl_p:
        return sl

    with fixed():
        sl_diff = to_decimal(open_price * max_sl_p / leverage)
        if long:
            return max(ZERO, open_price - sl_diff)
        return to_decimal(open_price + sl_diff)


def get_market_execution_price(price: Decimal, spread_p: Decimal, long: bool) -> Decimal:
    """Oracle price with the pair spread applied against the trader."""
    with fixed():
        price_diff = to_decimal(price * spread_p)
        if long:
            return to_decimal(price + price_diff)
        return max(ZERO, price - price_diff)
