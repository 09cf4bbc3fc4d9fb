"""Abstract price oracle interface.

Defines the contract for price lookups. The engine never talks to a price
feed directly; the host injects an oracle implementing this ABC.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from perp.exceptions import PriceUnavailableError


class PriceOracle(ABC):
    """Abstract base class for price oracles.

    Implementations return None when a price is unavailable. A zero price
    is treated as unavailable as well by ``require_price``.
    """

    @abstractmethod
    def get_price(self, oracle_index: int) -> Decimal | None:
        """Return the current price of a pair's base asset in USD."""
        ...

    @abstractmethod
    def get_collateral_price(self, collateral_index: int) -> Decimal | None:
        """Return the current USD price of one base unit of collateral."""
        ...


def require_price(price: Decimal | None, label: str) -> Decimal:
    """Return a usable price or fail the enclosing operation.

    Raises:
        PriceUnavailableError: If the price is missing or zero.
    """
    if price is None or price == 0:
        raise PriceUnavailableError(f"No price available for {label}")
    return price
