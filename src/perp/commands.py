"""Command messages accepted by the trading engine.

Trader commands act on ``env.sender``'s trades. Admin commands configure the
venue; access control is left to the host.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from perp.fees.models import FeeTier
from perp.fixed_point import ZERO
from perp.models import Fee, Group, Pair, PendingOrderType, TradeType, TradingActivated
from perp.price_impact.models import PairDepth

# ──────────────────────────────────────────────
# Trader commands
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class OpenTrade:
    """Open a market trade or place a limit/stop order.

    For market trades ``open_price`` is the expected price (0 = oracle price);
    for limit/stop orders it is the trigger price.
    """

    pair_index: int
    collateral_index: int
    collateral_amount: int
    leverage: Decimal
    long: bool
    max_slippage_p: Decimal
    trade_type: TradeType = TradeType.MARKET
    open_price: Decimal = ZERO
    tp: Decimal = ZERO
    sl: Decimal = ZERO


@dataclass(frozen=True)
class UpdateOpenOrder:
    pair_index: int
    index: int
    price: Decimal
    tp: Decimal
    sl: Decimal
    max_slippage_p: Decimal


@dataclass(frozen=True)
class CancelOpenOrder:
    pair_index: int
    index: int


@dataclass(frozen=True)
class UpdateTakeProfit:
    pair_index: int
    index: int
    tp: Decimal


@dataclass(frozen=True)
class UpdateStopLoss:
    pair_index: int
    index: int
    sl: Decimal


@dataclass(frozen=True)
class TriggerOrder:
    """Execute someone's pending order or tp/sl/liquidation. Sender earns the reward."""

    order_type: PendingOrderType
    user: str
    pair_index: int
    index: int


@dataclass(frozen=True)
class CloseTradeMarket:
    pair_index: int
    index: int


# ──────────────────────────────────────────────
# Admin commands
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class SetPairs:
    pairs: dict[int, Pair] = field(default_factory=dict)


@dataclass(frozen=True)
class SetGroups:
    groups: dict[int, Group] = field(default_factory=dict)


@dataclass(frozen=True)
class SetFees:
    fees: dict[int, Fee] = field(default_factory=dict)


@dataclass(frozen=True)
class SetPairCustomMaxLeverage:
    pair_index: int
    max_leverage: Decimal


@dataclass(frozen=True)
class SetCollaterals:
    """Collateral denominations keyed by collateral index."""

    collaterals: dict[int, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SetBorrowingPairParams:
    collateral_index: int
    pair_index: int
    group_index: int | None
    fee_per_block: Decimal
    fee_exponent: int
    max_oi: int


@dataclass(frozen=True)
class SetBorrowingGroupParams:
    collateral_index: int
    group_index: int
    fee_per_block: Decimal
    fee_exponent: int
    max_oi: int


@dataclass(frozen=True)
class SetOpenInterestCaps:
    """Max open interest per pair and per group, in collateral units."""

    collateral_index: int
    pair_caps: dict[int, int] = field(default_factory=dict)
    group_caps: dict[int, int] = field(default_factory=dict)


@dataclass(frozen=True)
class SetOiWindowsSettings:
    """Window layout; ``start_ts`` defaults to the current block time."""

    windows_duration: int
    windows_count: int
    start_ts: int | None = None


@dataclass(frozen=True)
class SetPairDepths:
    depths: dict[int, PairDepth] = field(default_factory=dict)


@dataclass(frozen=True)
class SetFeeTiers:
    tiers: list[FeeTier] = field(default_factory=list)


@dataclass(frozen=True)
class SetTradingActivated:
    state: TradingActivated


@dataclass(frozen=True)
class FundVault:
    collateral_index: int
    amount: int


@dataclass(frozen=True)
class ClaimGovFees:
    collateral_index: int
    recipient: str


Command = (
    OpenTrade
    | UpdateOpenOrder
    | CancelOpenOrder
    | UpdateTakeProfit
    | UpdateStopLoss
    | TriggerOrder
    | CloseTradeMarket
    | SetPairs
    | SetGroups
    | SetFees
    | SetPairCustomMaxLeverage
    | SetCollaterals
    | SetBorrowingPairParams
    | SetBorrowingGroupParams
    | SetOpenInterestCaps
    | SetOiWindowsSettings
    | SetPairDepths
    | SetFeeTiers
    | SetTradingActivated
    | FundVault
    | ClaimGovFees
)
