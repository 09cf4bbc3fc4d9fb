"""Settlement channel interface and recording reference implementation."""

from perp.settlement.base import SettlementChannel
from perp.settlement.recording import RecordingSettlement

__all__ = ["RecordingSettlement", "SettlementChannel"]
