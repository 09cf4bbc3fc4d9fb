"""Shared test fixtures for the perpetuals accounting core.

The default venue: one collateral (uusdc at $1), one leverage group
(1.1x-150x), one fee schedule and one pair (BTC-USD at $100, zero spread,
zero depth, no borrowing fee). Tests reconfigure what they need through
admin commands.
"""

from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal

import pytest

from perp.commands import (
    FundVault,
    OpenTrade,
    SetBorrowingPairParams,
    SetCollaterals,
    SetFees,
    SetGroups,
    SetOiWindowsSettings,
    SetPairs,
)
from perp.config import AppSettings
from perp.engine import TradingEngine
from perp.logging import setup_logging
from perp.models import CommandResult, Env, Fee, Group, Pair
from perp.oracle import StaticPriceOracle
from perp.settlement import RecordingSettlement
from perp.storage import InMemoryStorage

DENOM = "uusdc"
STAKING = "staking"
VAULT_FUNDING = 1_000_000_000


@dataclass
class Venue:
    engine: TradingEngine
    oracle: StaticPriceOracle
    settlement: RecordingSettlement
    storage: InMemoryStorage


@pytest.fixture(scope="session", autouse=True)
def configure_logging() -> None:
    setup_logging(AppSettings(log_level="DEBUG"))


@pytest.fixture
def settings() -> AppSettings:
    """AppSettings with test defaults."""
    return AppSettings(log_level="DEBUG", staking_address=STAKING)


@pytest.fixture
def crypto_fee() -> Fee:
    """0.03% open, 0.06% close, 0.02% trigger, min position 1_000_000 USD units."""
    return Fee(
        name="crypto",
        open_fee_p=Decimal("0.0003"),
        close_fee_p=Decimal("0.0006"),
        oracle_fee_p=Decimal("0"),
        trigger_order_fee_p=Decimal("0.0002"),
        min_position_size_usd=1_000_000,
    )


@pytest.fixture
def make_env() -> Callable[..., Env]:
    """Build an Env; defaults to height 1, time 1_000, sender alice."""

    def _make_env(height: int = 1, time: int = 1_000, sender: str = "alice") -> Env:
        return Env(height=height, time=time, sender=sender)

    return _make_env


@pytest.fixture
def make_venue(
    settings: AppSettings,
    crypto_fee: Fee,
    make_env: Callable[..., Env],
) -> Callable[..., Venue]:
    """Build a configured venue with the vault funded by ``vault``."""

    def _make_venue(vault: int = VAULT_FUNDING) -> Venue:
        storage = InMemoryStorage()
        oracle = StaticPriceOracle({0: Decimal("100")}, {0: Decimal("1")})
        settlement = RecordingSettlement()
        engine = TradingEngine(storage, oracle, settlement, settings)

        admin = make_env(sender="admin")
        engine.execute(SetCollaterals({0: DENOM}), admin)
        engine.execute(
            SetGroups({0: Group("crypto", Decimal("1.1"), Decimal("150"))}), admin
        )
        engine.execute(SetFees({0: crypto_fee}), admin)
        engine.execute(
            SetPairs({0: Pair("BTC", "USD", Decimal("0"), 0, 0, 0)}), admin
        )
        engine.execute(
            SetBorrowingPairParams(0, 0, None, Decimal("0"), 1, 1_000_000_000), admin
        )
        engine.execute(
            SetOiWindowsSettings(windows_duration=300, windows_count=5, start_ts=0), admin
        )
        engine.execute(FundVault(0, vault), admin)
        return Venue(engine, oracle, settlement, storage)

    return _make_venue


@pytest.fixture
def venue(make_venue: Callable[..., Venue]) -> Venue:
    """Default venue with a funded vault."""
    return make_venue()


@pytest.fixture
def open_market(
    venue: Venue, make_env: Callable[..., Env]
) -> Callable[..., CommandResult]:
    """Open a 10x long with 10_000_000 collateral unless overridden."""

    def _open_market(env: Env | None = None, **overrides) -> CommandResult:
        params = {
            "pair_index": 0,
            "collateral_index": 0,
            "collateral_amount": 10_000_000,
            "leverage": Decimal("10"),
            "long": True,
            "max_slippage_p": Decimal("0.01"),
        }
        params.update(overrides)
        return venue.engine.execute(OpenTrade(**params), env or make_env())

    return _open_market
