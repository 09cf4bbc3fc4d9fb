"""Shared data models for the perpetuals accounting core.

CRITICAL: All monetary values use Decimal or int base units. Never use float
for prices, amounts or fees.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from perp.fixed_point import mul_floor


class TradeType(str, Enum):
    """Kind of a stored trade.

    MARKET trades are live positions contributing open interest. LIMIT and
    STOP are pending orders that only become live when triggered.
    """

    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"


class PendingOrderType(str, Enum):
    """Closed set of execution kinds dispatched by the lifecycle."""

    MARKET = "market"
    LIMIT_OPEN = "limit_open"
    STOP_OPEN = "stop_open"
    TP_CLOSE = "tp_close"
    SL_CLOSE = "sl_close"
    LIQ_CLOSE = "liq_close"

    @property
    def is_open(self) -> bool:
        return self in (PendingOrderType.LIMIT_OPEN, PendingOrderType.STOP_OPEN)

    @property
    def is_trigger_close(self) -> bool:
        return self in (
            PendingOrderType.TP_CLOSE,
            PendingOrderType.SL_CLOSE,
            PendingOrderType.LIQ_CLOSE,
        )


class TradingActivated(str, Enum):
    """Venue-wide trading switch."""

    ACTIVATED = "activated"
    CLOSE_ONLY = "close_only"
    PAUSED = "paused"


@dataclass
class Trade:
    """A live position or a pending limit/stop order.

    Identity is (user, pair_index, index). Prices are Decimals; collateral is
    an int in the collateral's base units.
    """

    user: str
    pair_index: int
    index: int
    collateral_index: int
    collateral_amount: int
    leverage: Decimal
    long: bool
    trade_type: TradeType = TradeType.MARKET
    is_open: bool = False
    open_price: Decimal = Decimal("0")
    tp: Decimal = Decimal("0")
    sl: Decimal = Decimal("0")

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.user, self.pair_index, self.index)

    @property
    def position_size_collateral(self) -> int:
        """Notional in collateral units: collateral x leverage, floored."""
        return mul_floor(self.collateral_amount, self.leverage)


@dataclass
class TradeInfo:
    """Auxiliary bookkeeping attached one-to-one to a Trade."""

    created_block: int
    tp_last_updated_block: int
    sl_last_updated_block: int
    max_slippage_p: Decimal
    collateral_price_usd: Decimal
    last_oi_update_ts: int = 0  # 0 = never added to an OI window
    last_window_oi_usd: int = 0


@dataclass
class Pair:
    """Tradable pair configuration."""

    from_asset: str
    to_asset: str
    spread_p: Decimal
    oracle_index: int
    group_index: int
    fee_index: int

    @property
    def name(self) -> str:
        return f"{self.from_asset}-{self.to_asset}"


@dataclass
class Group:
    """Leverage group shared by several pairs."""

    name: str
    min_leverage: Decimal
    max_leverage: Decimal


@dataclass
class Fee:
    """Per-pair fee schedule. Percentages are fractions of position size."""

    name: str
    open_fee_p: Decimal
    close_fee_p: Decimal
    oracle_fee_p: Decimal
    trigger_order_fee_p: Decimal
    min_position_size_usd: int

    @property
    def min_fee_usd(self) -> int:
        """Fee paid by a minimum-size position over its whole round trip."""
        return mul_floor(
            self.min_position_size_usd,
            self.open_fee_p * 2 + self.trigger_order_fee_p,
        )


@dataclass
class Collateral:
    """Settlement token accepted as trade collateral."""

    denom: str


@dataclass(frozen=True)
class Env:
    """Invocation context supplied by the host: height, unix time, sender."""

    height: int
    time: int
    sender: str


@dataclass(frozen=True)
class Transfer:
    """Instruction for the settlement channel: pay amount of denom to recipient."""

    recipient: str
    denom: str
    amount: int


@dataclass
class CommandResult:
    """Effects of a successfully executed command."""

    action: str
    transfers: list[Transfer] = field(default_factory=list)
    attributes: dict[str, str] = field(default_factory=dict)
