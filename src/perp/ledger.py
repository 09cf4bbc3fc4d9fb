"""Per-collateral protocol balances: pending governance fees and the vault.

The vault is the counterparty of every trade. It keeps forfeited collateral
and its share of closing fees, and pays out trader profits.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from perp.exceptions import InsufficientVaultLiquidity
from perp.logging import get_logger
from perp.storage import Table

if TYPE_CHECKING:
    from perp.storage import Storage

logger = get_logger(__name__)


class Ledger:
    """Governance fee and vault balances, keyed by collateral index."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def pending_gov_fees(self, collateral_index: int) -> int:
        return self._storage.may_load(Table.PENDING_GOV_FEES, collateral_index, 0)

    def add_gov_fees(self, collateral_index: int, amount: int) -> None:
        total = self.pending_gov_fees(collateral_index) + amount
        self._storage.set(Table.PENDING_GOV_FEES, collateral_index, total)

    def claim_gov_fees(self, collateral_index: int) -> int:
        """Reset pending governance fees and return what was pending."""
        amount = self.pending_gov_fees(collateral_index)
        self._storage.set(Table.PENDING_GOV_FEES, collateral_index, 0)
        logger.info("gov_fees_claimed", collateral_index=collateral_index, amount=amount)
        return amount

    def vault_balance(self, collateral_index: int) -> int:
        return self._storage.may_load(Table.VAULT_BALANCES, collateral_index, 0)

    def fund_vault(self, collateral_index: int, amount: int) -> None:
        self.apply_vault_delta(collateral_index, amount)
        logger.info("vault_funded", collateral_index=collateral_index, amount=amount)

    def apply_vault_delta(self, collateral_index: int, delta: int) -> int:
        """Credit (positive) or debit (negative) the vault.

        Raises:
            InsufficientVaultLiquidity: If a debit exceeds the balance.
        """
        balance = self.vault_balance(collateral_index) + delta
        if balance < 0:
            raise InsufficientVaultLiquidity(
                f"Vault {collateral_index} short by {-balance} to cover payout"
            )
        self._storage.set(Table.VAULT_BALANCES, collateral_index, balance)
        return balance
