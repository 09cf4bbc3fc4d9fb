"""Borrowing fee state records.

All accumulators are Decimal fractions of position size ("1" = 100% of
notional). Open interest is in collateral base units.
"""

from dataclasses import dataclass
from decimal import Decimal

from perp.fixed_point import ZERO


@dataclass
class BorrowingData:
    """Fee accumulator for one pair or one group, scoped by collateral."""

    fee_per_block: Decimal = ZERO
    acc_fee_long: Decimal = ZERO
    acc_fee_short: Decimal = ZERO
    acc_last_updated_block: int = 0
    fee_exponent: int = 1

    def acc_fee(self, long: bool) -> Decimal:
        return self.acc_fee_long if long else self.acc_fee_short


@dataclass
class OpenInterest:
    """Long/short open interest and its cap, in collateral units."""

    long: int = 0
    short: int = 0
    max: int = 0

    def side(self, long: bool) -> int:
        return self.long if long else self.short


@dataclass
class BorrowingPairGroup:
    """One entry of a pair's group-membership history.

    At ``block`` the pair joined ``group_index`` (None: left every group). The
    group accumulators at the moment of joining are kept as the segment
    baseline, the previous group's accumulators as the end of the previous
    segment, and the pair's own accumulators as both.
    """

    group_index: int | None
    block: int
    initial_acc_fee_long: Decimal = ZERO
    initial_acc_fee_short: Decimal = ZERO
    prev_group_acc_fee_long: Decimal = ZERO
    prev_group_acc_fee_short: Decimal = ZERO
    pair_acc_fee_long: Decimal = ZERO
    pair_acc_fee_short: Decimal = ZERO

    def initial_acc_fee(self, long: bool) -> Decimal:
        return self.initial_acc_fee_long if long else self.initial_acc_fee_short

    def prev_group_acc_fee(self, long: bool) -> Decimal:
        return self.prev_group_acc_fee_long if long else self.prev_group_acc_fee_short

    def pair_acc_fee(self, long: bool) -> Decimal:
        return self.pair_acc_fee_long if long else self.pair_acc_fee_short


@dataclass
class InitialAccFees:
    """Accumulator snapshot taken when a trade opens."""

    acc_pair_fee: Decimal
    acc_group_fee: Decimal
    block: int
