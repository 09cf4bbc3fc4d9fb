"""Abstract keyed storage interface.

Defines the contract for the persistent state layer. Engine code depends
only on this interface; the host decides where records actually live.

Records are typed dataclasses keyed by composite tuples, e.g.
(collateral_index, pair_index) or (user, pair_index, index). A ``load`` hands
back a private copy: changes are only visible after an explicit ``set``.
"""

from abc import ABC, abstractmethod
from collections.abc import Hashable
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any

from perp.exceptions import StorageMissError

SINGLETON: tuple = ()


class Table(str, Enum):
    """Storage namespaces."""

    # Pair configuration
    PAIRS = "pairs"
    GROUPS = "groups"
    FEES = "fees"
    PAIR_CUSTOM_MAX_LEVERAGE = "pair_custom_max_leverage"
    COLLATERALS = "collaterals"

    # Trades
    TRADES = "trades"
    TRADE_INFOS = "trade_infos"
    TRADING_ACTIVATED = "trading_activated"

    # Borrowing fees
    BORROWING_PAIRS = "borrowing_pairs"
    BORROWING_GROUPS = "borrowing_groups"
    BORROWING_PAIR_GROUPS = "borrowing_pair_groups"
    PAIR_OIS = "pair_ois"
    GROUP_OIS = "group_ois"
    INITIAL_ACC_FEES = "initial_acc_fees"

    # Price impact
    OI_WINDOWS_SETTINGS = "oi_windows_settings"
    OI_WINDOWS = "oi_windows"
    PAIR_DEPTHS = "pair_depths"

    # Fees and ledgers
    FEE_TIERS = "fee_tiers"
    TRADER_INFOS = "trader_infos"
    TRADER_DAILY_INFOS = "trader_daily_infos"
    PENDING_GOV_FEES = "pending_gov_fees"
    VAULT_BALANCES = "vault_balances"


class Storage(ABC):
    """Abstract base class for typed key/value storage."""

    @abstractmethod
    def get(self, table: Table, key: Hashable) -> Any | None:
        """Return a copy of the record, or None if absent."""
        ...

    @abstractmethod
    def set(self, table: Table, key: Hashable, value: Any) -> None:
        """Store a record, replacing any previous value."""
        ...

    @abstractmethod
    def delete(self, table: Table, key: Hashable) -> None:
        """Remove a record. Removing an absent key is a no-op."""
        ...

    @abstractmethod
    def keys(self, table: Table) -> list[Hashable]:
        """Return all keys currently present in a table."""
        ...

    @abstractmethod
    def transaction(self) -> AbstractContextManager[None]:
        """Context manager making every write inside it all-or-nothing."""
        ...

    def load(self, table: Table, key: Hashable) -> Any:
        """Return a record that must exist.

        Raises:
            StorageMissError: If the record is absent.
        """
        value = self.get(table, key)
        if value is None:
            raise StorageMissError(f"No {table.value} record for key {key!r}")
        return value

    def may_load(self, table: Table, key: Hashable, default: Any = None) -> Any:
        """Return a record, or ``default`` if it is absent."""
        value = self.get(table, key)
        return default if value is None else value
