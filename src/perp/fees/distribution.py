"""Opening and closing fee computation.

Pure functions: callers pass an ``apply_tier`` callable that scales a normal
fee by the trader's fee tier (``FeeTierRegistry.calculate_fee_amount`` bound
to a trader and time).
"""

from collections.abc import Callable
from decimal import Decimal

from perp.exceptions import DivisionByZeroError
from perp.fees.models import ClosingFees, OpeningFees
from perp.fixed_point import fixed, mul_floor, to_uint_floor
from perp.models import Fee, PendingOrderType

TierFn = Callable[[int], int]


def get_position_size_collateral_basis(
    position_size_collateral: int,
    min_position_size_usd: int,
    collateral_price: Decimal,
) -> int:
    """Position size used for fees: never below the pair's minimum size."""
    if collateral_price == 0:
        raise DivisionByZeroError("Collateral price is zero")
    with fixed():
        min_position_size_collateral = to_uint_floor(
            Decimal(min_position_size_usd) / collateral_price
        )
    return max(position_size_collateral, min_position_size_collateral)


def compute_opening_fees(
    position_size_collateral: int,
    collateral_price: Decimal,
    fee: Fee,
    order_type: PendingOrderType,
    apply_tier: TierFn,
    trigger_reward_p: Decimal,
) -> OpeningFees:
    basis = get_position_size_collateral_basis(
        position_size_collateral, fee.min_position_size_usd, collateral_price
    )
    gov_fee = apply_tier(mul_floor(basis, fee.open_fee_p))
    trigger_fee = apply_tier(mul_floor(basis, fee.trigger_order_fee_p))

    trigger_reward = 0
    if order_type != PendingOrderType.MARKET:
        trigger_reward = mul_floor(trigger_fee, trigger_reward_p)

    return OpeningFees(gov_fee=gov_fee, trigger_fee=trigger_fee, trigger_reward=trigger_reward)


def split_closing_fee(
    closing_fee: int,
    trigger_reward: int,
    vault_fee_p: Decimal,
) -> ClosingFees:
    """Split a closing fee into vault and staking shares.

    The trigger reward is taken from the staking share and never exceeds it.
    """
    vault_fee = mul_floor(closing_fee, vault_fee_p)
    staking_fee = closing_fee - vault_fee
    trigger_reward = min(trigger_reward, staking_fee)
    return ClosingFees(
        closing_fee=closing_fee,
        vault_fee=vault_fee,
        staking_fee=staking_fee - trigger_reward,
        trigger_reward=trigger_reward,
    )


def compute_closing_fees(
    collateral: int,
    position_size_collateral: int,
    collateral_price: Decimal,
    fee: Fee,
    order_type: PendingOrderType,
    apply_tier: TierFn,
    vault_fee_p: Decimal,
    liq_fee_p: Decimal,
    trigger_reward_p: Decimal,
) -> ClosingFees:
    """Closing fee for a trade.

    Liquidations pay a flat ``liq_fee_p`` of collateral; every other close pays
    the tiered ``close_fee_p`` of the position size basis.
    """
    basis = get_position_size_collateral_basis(
        position_size_collateral, fee.min_position_size_usd, collateral_price
    )
    if order_type == PendingOrderType.LIQ_CLOSE:
        closing_fee = mul_floor(collateral, liq_fee_p)
    else:
        closing_fee = apply_tier(mul_floor(basis, fee.close_fee_p))

    trigger_reward = 0
    if order_type.is_trigger_close:
        trigger_fee = apply_tier(mul_floor(basis, fee.trigger_order_fee_p))
        trigger_reward = mul_floor(trigger_fee, trigger_reward_p)

    return split_closing_fee(closing_fee, trigger_reward, vault_fee_p)
