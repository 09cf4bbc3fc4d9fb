"""Pure borrowing fee arithmetic.

Every function takes its inputs explicitly and returns new values; nothing
here touches storage. The stateful wrapper lives in ``perp.borrowing.engine``.
"""

from dataclasses import replace
from decimal import Decimal

from perp.borrowing.models import (
    BorrowingData,
    BorrowingPairGroup,
    InitialAccFees,
    OpenInterest,
)
from perp.exceptions import BlockOrderError
from perp.fixed_point import (
    ZERO,
    fixed,
    ratio,
    saturating_sub,
    to_decimal,
    to_uint_floor,
)
from perp.logging import get_logger

logger = get_logger(__name__)


def get_pending_accrued(
    data: BorrowingData,
    oi: OpenInterest,
    current_height: int,
) -> tuple[Decimal, Decimal, Decimal]:
    """Accumulators as they would be at ``current_height``.

    The side with more open interest absorbs the whole delta; the minority
    side's accumulator is left unchanged.

    Returns:
        (acc_fee_long, acc_fee_short, delta)

    Raises:
        BlockOrderError: If ``current_height`` is older than the last update.
    """
    if current_height < data.acc_last_updated_block:
        raise BlockOrderError(
            f"Height {current_height} is older than last update "
            f"{data.acc_last_updated_block}"
        )

    more_shorts = oi.long < oi.short
    net_oi = oi.short - oi.long if more_shorts else oi.long - oi.short
    elapsed = current_height - data.acc_last_updated_block

    with fixed():
        if oi.max > 0 and data.fee_exponent > 0:
            utilization = ratio(net_oi, oi.max)
            delta = to_decimal(
                data.fee_per_block * elapsed * utilization**data.fee_exponent
            )
        else:
            delta = ZERO

        acc_fee_long = data.acc_fee_long
        acc_fee_short = data.acc_fee_short
        if more_shorts:
            acc_fee_short = to_decimal(acc_fee_short + delta)
        else:
            acc_fee_long = to_decimal(acc_fee_long + delta)

    return acc_fee_long, acc_fee_short, delta


def accrue(data: BorrowingData, oi: OpenInterest, height: int) -> BorrowingData:
    """Return ``data`` with accumulators brought forward to ``height``."""
    acc_fee_long, acc_fee_short, delta = get_pending_accrued(data, oi, height)
    if delta:
        logger.debug(
            "borrowing_accrued",
            height=height,
            delta=str(delta),
            oi_long=oi.long,
            oi_short=oi.short,
        )
    return replace(
        data,
        acc_fee_long=acc_fee_long,
        acc_fee_short=acc_fee_short,
        acc_last_updated_block=height,
    )


def update_oi(oi: OpenInterest, long: bool, increase: bool, amount: int) -> OpenInterest:
    """Add or remove ``amount`` on one side. Decrements saturate at zero."""
    current = oi.side(long)
    if increase:
        updated = current + amount
    else:
        updated = saturating_sub(current, amount)

    if long:
        return replace(oi, long=updated)
    return replace(oi, short=updated)


def get_pair_group_acc_fees_deltas(
    i: int,
    history: list[BorrowingPairGroup],
    initial: InitialAccFees,
    long: bool,
    current_group_acc: Decimal,
    current_pair_acc: Decimal,
) -> tuple[Decimal, Decimal, bool]:
    """Group and pair accumulator growth over history segment ``i``.

    Segment ``i`` runs from ``history[i].block`` to the next entry's block,
    or to now for the latest entry. When the segment started before the trade
    opened, the trade's own snapshot is the baseline instead of the segment's.

    Returns:
        (delta_group, delta_pair, before_trade_open)
    """
    group = history[i]
    before_trade_open = group.block < initial.block

    if i == len(history) - 1:
        group_acc_end = current_group_acc
        pair_acc_end = current_pair_acc
    else:
        next_group = history[i + 1]
        # Segment closed before the trade existed
        if before_trade_open and next_group.block <= initial.block:
            return ZERO, ZERO, True
        group_acc_end = next_group.prev_group_acc_fee(long)
        pair_acc_end = next_group.pair_acc_fee(long)

    if before_trade_open:
        group_acc_start = initial.acc_group_fee
        pair_acc_start = initial.acc_pair_fee
    else:
        group_acc_start = group.initial_acc_fee(long)
        pair_acc_start = group.pair_acc_fee(long)

    with fixed():
        delta_group = to_decimal(group_acc_end - group_acc_start)
        delta_pair = to_decimal(pair_acc_end - pair_acc_start)
    return delta_group, delta_pair, before_trade_open


def get_trade_borrowing_fee_p(
    history: list[BorrowingPairGroup],
    initial: InitialAccFees,
    long: bool,
    current_group_acc: Decimal,
    current_pair_acc: Decimal,
) -> Decimal:
    """Borrowing fee owed by a trade as a fraction of its position size.

    Walks the pair's group history newest to oldest, summing
    ``max(delta_group, delta_pair)`` per segment until the segment the trade
    opened in. Time spent before the pair's first group counts at the pair
    rate only.
    """
    fee_p = ZERO

    with fixed():
        if not history or history[0].block > initial.block:
            pair_acc_end = history[0].pair_acc_fee(long) if history else current_pair_acc
            fee_p = to_decimal(pair_acc_end - initial.acc_pair_fee)

        for i in range(len(history) - 1, -1, -1):
            delta_group, delta_pair, before_trade_open = get_pair_group_acc_fees_deltas(
                i, history, initial, long, current_group_acc, current_pair_acc
            )
            fee_p = to_decimal(fee_p + max(delta_group, delta_pair))
            if before_trade_open:
                break

    return fee_p


def get_trade_borrowing_fee(collateral: int, leverage: Decimal, fee_p: Decimal) -> int:
    """floor(collateral x leverage x fee_p) in collateral base units."""
    with fixed():
        amount = Decimal(collateral) * leverage * fee_p
    return to_uint_floor(amount)
