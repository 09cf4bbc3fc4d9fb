"""Fixed-point helpers for protocol arithmetic.

CRITICAL: All monetary values use Decimal or int. Never use float for prices,
amounts, percentages or accumulators.

Conventions:
  - Token amounts (collateral, open interest, fees) are ints in base units.
  - Prices, percentages and fee accumulators are Decimals truncated to
    18 fractional digits, the same resolution the settlement layer uses.
  - Converting a Decimal to an amount always floors, in the protocol's favor.

Multiplications and divisions run inside ``fixed()`` so intermediate results
keep every digit before truncation.
"""

from contextlib import AbstractContextManager
from decimal import (
    ROUND_FLOOR,
    Context,
    Decimal,
    DivisionByZero,
    InvalidOperation,
    Overflow,
    localcontext,
)

from perp.exceptions import ArithmeticOverflow, DivisionByZeroError

DECIMAL_PLACES = 18
ATOM = Decimal(1).scaleb(-DECIMAL_PLACES)  # 1e-18

UINT128_MAX = 2**128 - 1
DECIMAL_MAX = Decimal(UINT128_MAX).scaleb(-DECIMAL_PLACES)

ZERO = Decimal("0")
ONE = Decimal("1")

FIXED_CONTEXT = Context(
    prec=78,
    rounding=ROUND_FLOOR,
    traps=[InvalidOperation, DivisionByZero, Overflow],
)


def fixed() -> AbstractContextManager[Context]:
    """Return a local decimal context wide enough for exact protocol math."""
    return localcontext(FIXED_CONTEXT)


def to_decimal(value: Decimal | int | str, *, signed: bool = False) -> Decimal:
    """Truncate a value to 18 fractional digits and range-check it.

    Args:
        value: Decimal, int or numeric string.
        signed: Allow negative results (PnL percentages).

    Returns:
        The value floored to 18 decimal places.

    Raises:
        ArithmeticOverflow: If the value is outside the representable range.
    """
    raw = Decimal(value)
    if abs(raw) > DECIMAL_MAX:
        raise ArithmeticOverflow(f"Decimal out of range: {value}")
    with fixed():
        result = raw.quantize(ATOM, rounding=ROUND_FLOOR)
    if result < 0 and not signed:
        raise ArithmeticOverflow(f"Unsigned decimal underflow: {value}")
    return result


def to_uint_floor(value: Decimal | int) -> int:
    """Floor a non-negative Decimal to an unsigned base-unit amount."""
    with fixed():
        result = int(Decimal(value).to_integral_value(rounding=ROUND_FLOOR))
    return checked_uint(result)


def to_int_floor(value: Decimal | int) -> int:
    """Floor a Decimal to a signed int (toward negative infinity)."""
    with fixed():
        result = int(Decimal(value).to_integral_value(rounding=ROUND_FLOOR))
    if abs(result) > UINT128_MAX:
        raise ArithmeticOverflow(f"Signed amount out of range: {value}")
    return result


def checked_uint(value: int) -> int:
    """Range-check an unsigned amount.

    Raises:
        ArithmeticOverflow: If the amount is negative or above 2**128 - 1.
    """
    if value < 0:
        raise ArithmeticOverflow(f"Unsigned amount underflow: {value}")
    if value > UINT128_MAX:
        raise ArithmeticOverflow(f"Unsigned amount overflow: {value}")
    return value


def checked_sub(a: int, b: int) -> int:
    """Subtract two amounts, failing instead of going negative."""
    return checked_uint(a - b)


def saturating_sub(a: int, b: int) -> int:
    """Subtract two amounts, clamping at zero."""
    return a - b if b < a else 0


def mul_floor(amount: int, factor: Decimal) -> int:
    """Multiply a base-unit amount by a Decimal factor and floor."""
    with fixed():
        product = Decimal(amount) * factor
    return to_uint_floor(product)


def ratio(numerator: Decimal | int, denominator: Decimal | int) -> Decimal:
    """Divide two values into a truncated 18-digit Decimal.

    Raises:
        DivisionByZeroError: If the denominator is zero.
    """
    if denominator == 0:
        raise DivisionByZeroError(f"Division of {numerator} by zero")
    with fixed():
        quotient = Decimal(numerator) / Decimal(denominator)
    return to_decimal(quotient, signed=True)
