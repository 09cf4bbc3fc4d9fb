"""Pair, group, fee and collateral configuration.

Thin typed accessors over storage plus admin setters that validate ranges
before writing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from perp.exceptions import InvalidConfiguration, PairNotFound, StorageMissError
from perp.fixed_point import ONE, ZERO
from perp.logging import get_logger
from perp.models import Collateral, Fee, Group, Pair
from perp.storage import Table

if TYPE_CHECKING:
    from perp.storage import Storage

logger = get_logger(__name__)


class PairRegistry:
    """Read and write venue configuration records.

    Args:
        storage: Keyed storage holding configuration tables.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def get_pair(self, pair_index: int) -> Pair:
        pair = self._storage.get(Table.PAIRS, pair_index)
        if pair is None:
            raise PairNotFound(f"Pair {pair_index} not found")
        return pair

    def get_group(self, group_index: int) -> Group:
        return self._storage.load(Table.GROUPS, group_index)

    def get_fee(self, fee_index: int) -> Fee:
        return self._storage.load(Table.FEES, fee_index)

    def get_pair_custom_max_leverage(self, pair_index: int) -> Decimal | None:
        return self._storage.get(Table.PAIR_CUSTOM_MAX_LEVERAGE, pair_index)

    def get_collateral(self, collateral_index: int) -> Collateral:
        collateral = self._storage.get(Table.COLLATERALS, collateral_index)
        if collateral is None:
            raise StorageMissError(f"Collateral {collateral_index} not configured")
        return collateral

    def set_pair(self, pair_index: int, pair: Pair) -> None:
        self.get_group(pair.group_index)
        self.get_fee(pair.fee_index)
        if not ZERO <= pair.spread_p < ONE:
            raise InvalidConfiguration(f"Spread {pair.spread_p} outside [0, 1)")
        self._storage.set(Table.PAIRS, pair_index, pair)
        logger.info("pair_set", pair_index=pair_index, pair=pair.name)

    def set_group(self, group_index: int, group: Group) -> None:
        if group.min_leverage < ONE or group.max_leverage < group.min_leverage:
            raise InvalidConfiguration(
                f"Invalid leverage bounds [{group.min_leverage}, {group.max_leverage}]"
            )
        self._storage.set(Table.GROUPS, group_index, group)
        logger.info(
            "group_set",
            group_index=group_index,
            name=group.name,
            min_leverage=str(group.min_leverage),
            max_leverage=str(group.max_leverage),
        )

    def set_fee(self, fee_index: int, fee: Fee) -> None:
        for rate in (fee.open_fee_p, fee.close_fee_p, fee.oracle_fee_p, fee.trigger_order_fee_p):
            if not ZERO <= rate < ONE:
                raise InvalidConfiguration(f"Fee rate {rate} outside [0, 1)")
        self._storage.set(Table.FEES, fee_index, fee)
        logger.info("fee_set", fee_index=fee_index, name=fee.name)

    def set_pair_custom_max_leverage(self, pair_index: int, max_leverage: Decimal) -> None:
        """Cap a pair's leverage below its group's. Zero removes the override."""
        self.get_pair(pair_index)
        if max_leverage == 0:
            self._storage.delete(Table.PAIR_CUSTOM_MAX_LEVERAGE, pair_index)
        else:
            self._storage.set(Table.PAIR_CUSTOM_MAX_LEVERAGE, pair_index, max_leverage)
        logger.info(
            "pair_custom_max_leverage_set",
            pair_index=pair_index,
            max_leverage=str(max_leverage),
        )

    def set_collateral(self, collateral_index: int, denom: str) -> None:
        if not denom:
            raise InvalidConfiguration(f"Collateral {collateral_index} needs a denom")
        self._storage.set(Table.COLLATERALS, collateral_index, Collateral(denom=denom))
        logger.info("collateral_set", collateral_index=collateral_index, denom=denom)
