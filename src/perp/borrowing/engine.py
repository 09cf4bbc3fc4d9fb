"""Stateful borrowing fee engine.

Persists pair and group accumulators, open interest and the pair-group
history, all scoped by collateral index. Every read that needs an
accumulator "as of now" goes through the pending helpers, which accrue in
memory without writing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from perp.borrowing import accrual
from perp.borrowing.models import (
    BorrowingData,
    BorrowingPairGroup,
    InitialAccFees,
    OpenInterest,
)
from perp.exceptions import InvalidConfiguration
from perp.logging import get_logger
from perp.storage import Table

if TYPE_CHECKING:
    from perp.models import Trade
    from perp.storage import Storage

logger = get_logger(__name__)

MAX_FEE_EXPONENT = 3


class BorrowingEngine:
    """Borrowing fee accrual and open interest bookkeeping.

    Args:
        storage: Keyed storage holding borrowing tables.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    # ── Reads ────────────────────────────────────

    def get_pair_group_history(
        self, collateral_index: int, pair_index: int
    ) -> list[BorrowingPairGroup]:
        return self._storage.may_load(
            Table.BORROWING_PAIR_GROUPS, (collateral_index, pair_index), []
        )

    def get_pair_group_index(self, collateral_index: int, pair_index: int) -> int | None:
        """Group the pair currently belongs to, or None."""
        history = self.get_pair_group_history(collateral_index, pair_index)
        return history[-1].group_index if history else None

    def get_pair_oi(self, collateral_index: int, pair_index: int) -> OpenInterest:
        return self._storage.may_load(
            Table.PAIR_OIS, (collateral_index, pair_index), OpenInterest()
        )

    def get_group_oi(self, collateral_index: int, group_index: int | None) -> OpenInterest:
        if group_index is None:
            return OpenInterest()
        return self._storage.may_load(
            Table.GROUP_OIS, (collateral_index, group_index), OpenInterest()
        )

    def get_pair_pending_acc_fees(
        self, collateral_index: int, pair_index: int, height: int
    ) -> BorrowingData:
        data = self._storage.may_load(
            Table.BORROWING_PAIRS, (collateral_index, pair_index), BorrowingData()
        )
        return accrual.accrue(data, self.get_pair_oi(collateral_index, pair_index), height)

    def get_group_pending_acc_fees(
        self, collateral_index: int, group_index: int | None, height: int
    ) -> BorrowingData:
        """Group accumulators at ``height``. No group accrues nothing."""
        if group_index is None:
            return BorrowingData(acc_last_updated_block=height)
        data = self._storage.may_load(
            Table.BORROWING_GROUPS, (collateral_index, group_index), BorrowingData()
        )
        return accrual.accrue(data, self.get_group_oi(collateral_index, group_index), height)

    def get_initial_acc_fees(self, trade: Trade) -> InitialAccFees:
        return self._storage.load(Table.INITIAL_ACC_FEES, self._trade_key(trade))

    # ── Accrual ──────────────────────────────────

    def set_pair_pending_acc_fees(
        self, collateral_index: int, pair_index: int, height: int
    ) -> BorrowingData:
        data = self.get_pair_pending_acc_fees(collateral_index, pair_index, height)
        self._storage.set(Table.BORROWING_PAIRS, (collateral_index, pair_index), data)
        return data

    def set_group_pending_acc_fees(
        self, collateral_index: int, group_index: int | None, height: int
    ) -> BorrowingData:
        data = self.get_group_pending_acc_fees(collateral_index, group_index, height)
        if group_index is not None:
            self._storage.set(Table.BORROWING_GROUPS, (collateral_index, group_index), data)
        return data

    # ── Trades ───────────────────────────────────

    def handle_trade_borrowing(
        self,
        trade: Trade,
        position_collateral: int,
        open: bool,
        height: int,
    ) -> None:
        """Accrue, then move open interest for a trade opening or closing.

        Accumulators are persisted at ``height`` before the OI change so the
        fee up to this block reflects the imbalance that existed before it.
        On open, the trade's baseline snapshot is stored.
        """
        collateral_index = trade.collateral_index
        group_index = self.get_pair_group_index(collateral_index, trade.pair_index)

        pair_data = self.set_pair_pending_acc_fees(collateral_index, trade.pair_index, height)
        group_data = self.set_group_pending_acc_fees(collateral_index, group_index, height)

        self._update_pair_oi(
            collateral_index, trade.pair_index, trade.long, open, position_collateral
        )
        self._update_group_oi(
            collateral_index, group_index, trade.long, open, position_collateral
        )

        if open:
            initial = InitialAccFees(
                acc_pair_fee=pair_data.acc_fee(trade.long),
                acc_group_fee=group_data.acc_fee(trade.long),
                block=height,
            )
            self._storage.set(Table.INITIAL_ACC_FEES, self._trade_key(trade), initial)
        else:
            self._storage.delete(Table.INITIAL_ACC_FEES, self._trade_key(trade))

        logger.debug(
            "trade_borrowing_handled",
            user=trade.user,
            pair_index=trade.pair_index,
            index=trade.index,
            open=open,
            position_collateral=position_collateral,
            height=height,
        )

    def get_trade_borrowing_fee_p(self, trade: Trade, height: int) -> Decimal:
        collateral_index = trade.collateral_index
        history = self.get_pair_group_history(collateral_index, trade.pair_index)
        group_index = history[-1].group_index if history else None

        current_pair = self.get_pair_pending_acc_fees(collateral_index, trade.pair_index, height)
        current_group = self.get_group_pending_acc_fees(collateral_index, group_index, height)

        return accrual.get_trade_borrowing_fee_p(
            history,
            self.get_initial_acc_fees(trade),
            trade.long,
            current_group.acc_fee(trade.long),
            current_pair.acc_fee(trade.long),
        )

    def get_trade_borrowing_fee(self, trade: Trade, height: int) -> int:
        """Borrowing fee owed by an open trade at ``height``, in collateral units."""
        fee_p = self.get_trade_borrowing_fee_p(trade, height)
        return accrual.get_trade_borrowing_fee(
            trade.collateral_amount, trade.leverage, fee_p
        )

    def within_exposure_limits(
        self,
        collateral_index: int,
        pair_index: int,
        long: bool,
        position_collateral: int,
    ) -> bool:
        """Check pair and group caps for an additional position.

        The pair cap always applies. The group cap is skipped when the pair
        has no group or the group cap is zero.
        """
        pair_oi = self.get_pair_oi(collateral_index, pair_index)
        if pair_oi.side(long) + position_collateral > pair_oi.max:
            return False

        group_index = self.get_pair_group_index(collateral_index, pair_index)
        if group_index is None:
            return True
        group_oi = self.get_group_oi(collateral_index, group_index)
        return group_oi.max == 0 or group_oi.side(long) + position_collateral <= group_oi.max

    # ── Admin ────────────────────────────────────

    def set_pair_params(
        self,
        collateral_index: int,
        pair_index: int,
        group_index: int | None,
        fee_per_block: Decimal,
        fee_exponent: int,
        max_oi: int,
        height: int,
    ) -> None:
        """Set a pair's fee curve, cap and group.

        Accrues at the old rate first. On a group change, both groups are
        accrued, the pair's open interest moves from the old group to the new
        one, and a history entry is appended.
        """
        self._check_fee_curve(fee_per_block, fee_exponent)
        self._check_max_oi(max_oi)

        pair_data = self.set_pair_pending_acc_fees(collateral_index, pair_index, height)
        prev_group_index = self.get_pair_group_index(collateral_index, pair_index)

        if group_index != prev_group_index:
            self._set_pair_group(
                collateral_index, pair_index, prev_group_index, group_index, pair_data, height
            )

        pair_data.fee_per_block = fee_per_block
        pair_data.fee_exponent = fee_exponent
        self._storage.set(Table.BORROWING_PAIRS, (collateral_index, pair_index), pair_data)
        self.set_pair_max_oi(collateral_index, pair_index, max_oi)

        logger.info(
            "borrowing_pair_params_set",
            collateral_index=collateral_index,
            pair_index=pair_index,
            group_index=group_index,
            fee_per_block=str(fee_per_block),
            fee_exponent=fee_exponent,
            max_oi=max_oi,
        )

    def set_group_params(
        self,
        collateral_index: int,
        group_index: int,
        fee_per_block: Decimal,
        fee_exponent: int,
        max_oi: int,
        height: int,
    ) -> None:
        """Set a group's fee curve and cap, accruing at the old rate first."""
        self._check_fee_curve(fee_per_block, fee_exponent)
        self._check_max_oi(max_oi)

        group_data = self.set_group_pending_acc_fees(collateral_index, group_index, height)
        group_data.fee_per_block = fee_per_block
        group_data.fee_exponent = fee_exponent
        self._storage.set(Table.BORROWING_GROUPS, (collateral_index, group_index), group_data)
        self.set_group_max_oi(collateral_index, group_index, max_oi)

        logger.info(
            "borrowing_group_params_set",
            collateral_index=collateral_index,
            group_index=group_index,
            fee_per_block=str(fee_per_block),
            fee_exponent=fee_exponent,
            max_oi=max_oi,
        )

    def set_pair_max_oi(self, collateral_index: int, pair_index: int, max_oi: int) -> None:
        self._check_max_oi(max_oi)
        oi = self.get_pair_oi(collateral_index, pair_index)
        oi.max = max_oi
        self._storage.set(Table.PAIR_OIS, (collateral_index, pair_index), oi)

    def set_group_max_oi(self, collateral_index: int, group_index: int, max_oi: int) -> None:
        self._check_max_oi(max_oi)
        oi = self.get_group_oi(collateral_index, group_index)
        oi.max = max_oi
        self._storage.set(Table.GROUP_OIS, (collateral_index, group_index), oi)

    # ── Internals ────────────────────────────────

    def _set_pair_group(
        self,
        collateral_index: int,
        pair_index: int,
        prev_group_index: int | None,
        group_index: int | None,
        pair_data: BorrowingData,
        height: int,
    ) -> None:
        prev_group = self.set_group_pending_acc_fees(collateral_index, prev_group_index, height)
        new_group = self.set_group_pending_acc_fees(collateral_index, group_index, height)

        pair_oi = self.get_pair_oi(collateral_index, pair_index)
        for long in (True, False):
            amount = pair_oi.side(long)
            if amount:
                self._update_group_oi(collateral_index, prev_group_index, long, False, amount)
                self._update_group_oi(collateral_index, group_index, long, True, amount)

        history = self.get_pair_group_history(collateral_index, pair_index)
        history.append(
            BorrowingPairGroup(
                group_index=group_index,
                block=height,
                initial_acc_fee_long=new_group.acc_fee_long,
                initial_acc_fee_short=new_group.acc_fee_short,
                prev_group_acc_fee_long=prev_group.acc_fee_long,
                prev_group_acc_fee_short=prev_group.acc_fee_short,
                pair_acc_fee_long=pair_data.acc_fee_long,
                pair_acc_fee_short=pair_data.acc_fee_short,
            )
        )
        self._storage.set(Table.BORROWING_PAIR_GROUPS, (collateral_index, pair_index), history)

        logger.info(
            "borrowing_pair_group_changed",
            collateral_index=collateral_index,
            pair_index=pair_index,
            prev_group_index=prev_group_index,
            group_index=group_index,
            height=height,
        )

    def _update_pair_oi(
        self, collateral_index: int, pair_index: int, long: bool, increase: bool, amount: int
    ) -> OpenInterest:
        oi = accrual.update_oi(self.get_pair_oi(collateral_index, pair_index), long, increase, amount)
        self._storage.set(Table.PAIR_OIS, (collateral_index, pair_index), oi)
        return oi

    def _update_group_oi(
        self,
        collateral_index: int,
        group_index: int | None,
        long: bool,
        increase: bool,
        amount: int,
    ) -> OpenInterest:
        oi = accrual.update_oi(
            self.get_group_oi(collateral_index, group_index), long, increase, amount
        )
        if group_index is not None:
            self._storage.set(Table.GROUP_OIS, (collateral_index, group_index), oi)
        return oi

    @staticmethod
    def _check_fee_curve(fee_per_block: Decimal, fee_exponent: int) -> None:
        if fee_per_block < 0:
            raise InvalidConfiguration(f"Negative fee per block {fee_per_block}")
        if not 0 <= fee_exponent <= MAX_FEE_EXPONENT:
            raise InvalidConfiguration(
                f"Fee exponent {fee_exponent} outside [0, {MAX_FEE_EXPONENT}]"
            )

    @staticmethod
    def _check_max_oi(max_oi: int) -> None:
        if max_oi < 0:
            raise InvalidConfiguration(f"Negative max open interest {max_oi}")

    @staticmethod
    def _trade_key(trade: Trade) -> tuple[int, str, int, int]:
        return (trade.collateral_index, trade.user, trade.pair_index, trade.index)
