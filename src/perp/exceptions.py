"""Custom exceptions for the perpetuals accounting core.

All engine and lifecycle exceptions live here to avoid circular imports
between modules. Four families hang off PerpError:

  - TradeValidationError: request rejected before any state changed.
  - SequencingError: caller misuse or logic bug (height order, missing trade).
  - PerpArithmeticError: overflow / division by zero, always fatal.
  - ExternalError: a collaborator (oracle, storage, vault) could not serve.
"""


class PerpError(Exception):
    """Base exception for all perpetuals core errors."""


# ──────────────────────────────────────────────
# Validation (non-mutating)
# ──────────────────────────────────────────────


class TradeValidationError(PerpError):
    """Raised when a request fails a read-only validation check."""


class InvalidLeverage(TradeValidationError):
    """Raised when leverage is outside the pair/group bounds."""


class InvalidTpSl(TradeValidationError):
    """Raised when take-profit or stop-loss is on the wrong side of the price."""


class InsufficientCollateral(TradeValidationError):
    """Raised when collateral cannot cover the minimum fee multiple."""


class PriceImpactTooHigh(TradeValidationError):
    """Raised when leverage x price impact exceeds the open negative PnL cap."""


class ExposureLimitReached(TradeValidationError):
    """Raised when a position would push pair or group open interest above its cap."""


class InvalidSlippage(TradeValidationError):
    """Raised when the execution price moved beyond the allowed slippage."""


class InvalidTrigger(TradeValidationError):
    """Raised when a trigger is sent but the price has not crossed its level."""


class InvalidTradeType(TradeValidationError):
    """Raised when an operation is not valid for the trade's type."""


class MaxTradesPerPair(TradeValidationError):
    """Raised when a trader has no free trade slot left on a pair."""


class MaxPendingOrders(TradeValidationError):
    """Raised when a trader has too many pending limit/stop orders on a pair."""


class OperationsHalted(TradeValidationError):
    """Raised when trading activation state forbids the operation."""


class InvalidConfiguration(TradeValidationError):
    """Raised when an admin command carries out-of-range parameters."""


# ──────────────────────────────────────────────
# Sequencing
# ──────────────────────────────────────────────


class SequencingError(PerpError):
    """Raised on out-of-order or inconsistent invocation sequences."""


class BlockOrderError(SequencingError):
    """Raised when an accumulator is updated with a height older than its last update."""


class TradeNotFound(SequencingError):
    """Raised when the referenced trade or order does not exist."""


class TradeAlreadyClosed(SequencingError):
    """Raised when an operation targets a trade that is no longer open."""


# ──────────────────────────────────────────────
# Arithmetic
# ──────────────────────────────────────────────


class PerpArithmeticError(PerpError):
    """Base for fatal arithmetic failures."""


class ArithmeticOverflow(PerpArithmeticError):
    """Raised when a value leaves the representable fixed-point range."""


class DivisionByZeroError(PerpArithmeticError):
    """Raised on division by zero in protocol math."""


# ──────────────────────────────────────────────
# External collaborators
# ──────────────────────────────────────────────


class ExternalError(PerpError):
    """Base for failures of external collaborators."""


class PriceUnavailableError(ExternalError):
    """Raised when the oracle has no price (or a zero price) for an index."""


class StorageMissError(ExternalError):
    """Raised when a required storage record is missing."""


class PairNotFound(StorageMissError):
    """Raised when a pair index has no configuration."""


class InsufficientVaultLiquidity(ExternalError):
    """Raised when the vault cannot cover a trader payout."""
