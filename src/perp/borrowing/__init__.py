"""Borrowing fee engine -- imbalance-weighted accrual per pair and group."""

from perp.borrowing.engine import BorrowingEngine
from perp.borrowing.models import (
    BorrowingData,
    BorrowingPairGroup,
    InitialAccFees,
    OpenInterest,
)

__all__ = [
    "BorrowingData",
    "BorrowingEngine",
    "BorrowingPairGroup",
    "InitialAccFees",
    "OpenInterest",
]
