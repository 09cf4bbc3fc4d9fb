"""Fee computation and trader fee tiers."""

from perp.fees.distribution import (
    compute_closing_fees,
    compute_opening_fees,
    get_position_size_collateral_basis,
    split_closing_fee,
)
from perp.fees.models import (
    ClosingFees,
    FeeTier,
    OpeningFees,
    TraderDailyInfo,
    TraderInfo,
)
from perp.fees.tiers import FeeTierRegistry

__all__ = [
    "ClosingFees",
    "FeeTier",
    "FeeTierRegistry",
    "OpeningFees",
    "TraderDailyInfo",
    "TraderInfo",
    "compute_closing_fees",
    "compute_opening_fees",
    "get_position_size_collateral_basis",
    "split_closing_fee",
]
