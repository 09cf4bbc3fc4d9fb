"""In-memory storage with all-or-nothing transactions.

The reference host for tests and simulations. Records are deep-copied on the
way in and out so callers can never mutate stored state without ``set``.
"""

import copy
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from typing import Any

from perp.logging import get_logger
from perp.storage.base import Storage, Table

logger = get_logger(__name__)


class InMemoryStorage(Storage):
    """Dict-backed Storage implementation.

    Usage:
        storage = InMemoryStorage()
        with storage.transaction():
            storage.set(Table.PAIRS, 0, pair)
            ...  # any exception here rolls back every write above
    """

    def __init__(self) -> None:
        self._tables: dict[Table, dict[Hashable, Any]] = {}
        self._depth = 0

    def get(self, table: Table, key: Hashable) -> Any | None:
        value = self._tables.get(table, {}).get(key)
        return copy.deepcopy(value)

    def set(self, table: Table, key: Hashable, value: Any) -> None:
        self._tables.setdefault(table, {})[key] = copy.deepcopy(value)

    def delete(self, table: Table, key: Hashable) -> None:
        self._tables.get(table, {}).pop(key, None)

    def keys(self, table: Table) -> list[Hashable]:
        return list(self._tables.get(table, {}))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Snapshot state and restore it if the block raises.

        Nested transactions join the outermost one.
        """
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return

        snapshot = copy.deepcopy(self._tables)
        self._depth = 1
        try:
            yield
        except BaseException:
            self._tables = snapshot
            logger.debug("storage_transaction_rolled_back")
            raise
        finally:
            self._depth = 0
