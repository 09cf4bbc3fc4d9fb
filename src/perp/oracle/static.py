"""In-memory oracle with prices set by the caller.

Used by tests and simulations in place of a live feed.
"""

from decimal import Decimal

from perp.logging import get_logger
from perp.oracle.base import PriceOracle

logger = get_logger(__name__)


class StaticPriceOracle(PriceOracle):
    """Oracle serving whatever prices were last set.

    Args:
        prices: Initial asset prices keyed by oracle index.
        collateral_prices: Initial collateral prices keyed by collateral index.
    """

    def __init__(
        self,
        prices: dict[int, Decimal] | None = None,
        collateral_prices: dict[int, Decimal] | None = None,
    ) -> None:
        self._prices: dict[int, Decimal] = dict(prices or {})
        self._collateral_prices: dict[int, Decimal] = dict(collateral_prices or {})

    def set_price(self, oracle_index: int, price: Decimal) -> None:
        self._prices[oracle_index] = price
        logger.debug("oracle_price_set", oracle_index=oracle_index, price=str(price))

    def set_collateral_price(self, collateral_index: int, price: Decimal) -> None:
        self._collateral_prices[collateral_index] = price
        logger.debug(
            "oracle_collateral_price_set",
            collateral_index=collateral_index,
            price=str(price),
        )

    def get_price(self, oracle_index: int) -> Decimal | None:
        return self._prices.get(oracle_index)

    def get_collateral_price(self, collateral_index: int) -> Decimal | None:
        return self._collateral_prices.get(collateral_index)
