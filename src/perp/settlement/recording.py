"""Settlement channel that records batches instead of moving funds."""

from collections import defaultdict

from perp.logging import get_logger
from perp.models import Transfer
from perp.settlement.base import SettlementChannel

logger = get_logger(__name__)


class RecordingSettlement(SettlementChannel):
    """Keeps every submitted batch and running totals per recipient."""

    def __init__(self) -> None:
        self.batches: list[list[Transfer]] = []
        self._totals: dict[tuple[str, str], int] = defaultdict(int)

    def submit(self, transfers: list[Transfer]) -> None:
        self.batches.append(list(transfers))
        for transfer in transfers:
            self._totals[(transfer.recipient, transfer.denom)] += transfer.amount
            logger.info(
                "transfer_settled",
                recipient=transfer.recipient,
                denom=transfer.denom,
                amount=transfer.amount,
            )

    @property
    def transfers(self) -> list[Transfer]:
        return [transfer for batch in self.batches for transfer in batch]

    def total_for(self, recipient: str, denom: str) -> int:
        """Sum of everything paid to ``recipient`` in ``denom``."""
        return self._totals[(recipient, denom)]
