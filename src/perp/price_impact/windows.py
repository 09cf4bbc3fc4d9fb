"""Pure window arithmetic and the price impact formula."""

from decimal import Decimal

from perp.fixed_point import ZERO, fixed, ratio, to_decimal
from perp.price_impact.models import OiWindowsSettings


def window_id(timestamp: int, settings: OiWindowsSettings) -> int:
    """Index of the window containing ``timestamp``.

    Timestamps before ``start_ts`` fall into window 0.
    """
    return max(0, (timestamp - settings.start_ts) // settings.windows_duration)


def earliest_active_window_id(current_window_id: int, windows_count: int) -> int:
    return max(0, current_window_id - (windows_count - 1))


def is_window_potentially_active(
    add_window_id: int,
    current_window_id: int,
    max_windows_count: int,
) -> bool:
    """Whether a window can still hold open interest that counts toward impact."""
    return current_window_id - add_window_id < max_windows_count


def get_trade_price_impact(
    open_price: Decimal,
    long: bool,
    start_oi_usd: int,
    trade_oi_usd: int,
    one_percent_depth_usd: int,
) -> tuple[Decimal, Decimal]:
    """Price impact of a trade given the open interest already in the book.

    Half of the trade's own size counts, as the average fill moves the price
    by half its full impact.

    Returns:
        (price_impact_p, price_after_impact). Zero depth means no impact.
    """
    if one_percent_depth_usd == 0:
        return ZERO, open_price

    price_impact_p = ratio(start_oi_usd + trade_oi_usd // 2, one_percent_depth_usd)
    with fixed():
        price_impact = to_decimal(price_impact_p * open_price)
        if long:
            price_after_impact = to_decimal(open_price + price_impact)
        else:
            # Shorts cannot be pushed below zero
            price_after_impact = max(ZERO, open_price - price_impact)

    return price_impact_p, price_after_impact
