"""Sliding-window open interest records. USD values are ints in base units."""

from dataclasses import dataclass


@dataclass
class OiWindowsSettings:
    """Window layout. A zero count or zero duration disables price impact."""

    start_ts: int = 0
    windows_duration: int = 0
    windows_count: int = 0

    @property
    def enabled(self) -> bool:
        return self.windows_count > 0 and self.windows_duration > 0


@dataclass
class PairOi:
    """Open interest added to one pair within one window."""

    oi_long_usd: int = 0
    oi_short_usd: int = 0

    def side(self, long: bool) -> int:
        return self.oi_long_usd if long else self.oi_short_usd


@dataclass
class PairDepth:
    """USD needed to move the price 1% up (above) or down (below)."""

    one_percent_depth_above_usd: int = 0
    one_percent_depth_below_usd: int = 0

    def side(self, long: bool) -> int:
        return self.one_percent_depth_above_usd if long else self.one_percent_depth_below_usd
