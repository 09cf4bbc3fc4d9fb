"""Abstract settlement channel.

Receives the transfer instructions produced by a command. The engine
submits once every state change of the command has been made, inside the
same storage transaction: raising from ``submit`` rolls the command back.
"""

from abc import ABC, abstractmethod

from perp.models import Transfer


class SettlementChannel(ABC):
    """Abstract base class for settlement channels."""

    @abstractmethod
    def submit(self, transfers: list[Transfer]) -> None:
        """Execute a batch of transfers atomically.

        Args:
            transfers: Instructions to pay ``amount`` of ``denom`` to
                ``recipient``. Zero-amount transfers are never included.
        """
        ...
