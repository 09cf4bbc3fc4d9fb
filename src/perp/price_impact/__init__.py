"""Price impact engine -- sliding-window open interest against pair depth."""

from perp.price_impact.engine import PriceImpactEngine
from perp.price_impact.models import OiWindowsSettings, PairDepth, PairOi

__all__ = ["OiWindowsSettings", "PairDepth", "PairOi", "PriceImpactEngine"]
