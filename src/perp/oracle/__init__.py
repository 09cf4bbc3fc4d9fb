"""Price oracle interface and static reference implementation."""

from perp.oracle.base import PriceOracle, require_price
from perp.oracle.static import StaticPriceOracle

__all__ = ["PriceOracle", "StaticPriceOracle", "require_price"]
