"""Fee tier and fee breakdown records. Amounts are collateral base units."""

from dataclasses import dataclass
from decimal import Decimal

from perp.fixed_point import ZERO


@dataclass
class FeeTier:
    """Fee discount unlocked once trailing points reach ``points_threshold``."""

    fee_multiplier: Decimal
    points_threshold: int


@dataclass
class TraderInfo:
    last_day_updated: int = 0
    trailing_points: int = 0


@dataclass
class TraderDailyInfo:
    """Per-day points and the multiplier fixed for that day (0 = none)."""

    fee_multiplier_cache: Decimal = ZERO
    points: int = 0


@dataclass
class OpeningFees:
    """Breakdown of the fees charged when a trade goes live.

    The governance fee is charged twice: once into pending governance fees
    and once into the staking share. The trigger reward, paid to whoever
    executed a limit/stop order, comes out of the staking share.
    """

    gov_fee: int
    trigger_fee: int
    trigger_reward: int

    @property
    def staking_fee(self) -> int:
        return self.gov_fee + self.trigger_fee - self.trigger_reward

    @property
    def total(self) -> int:
        return self.gov_fee * 2 + self.trigger_fee


@dataclass
class ClosingFees:
    """Breakdown of the closing fee: vault share, staking share, trigger reward."""

    closing_fee: int
    vault_fee: int
    staking_fee: int
    trigger_reward: int
