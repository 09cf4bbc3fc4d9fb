"""Configuration system using pydantic-settings with environment variable loading.

Protocol constants are declared once here; the pure pricing and liquidation
functions default to them, and the engine passes the loaded settings through.
"""

from decimal import Decimal

from pydantic_settings import BaseSettings, SettingsConfigDict

MAX_PNL_P = Decimal("9")  # 900% max gain
MAX_SL_P = Decimal("0.75")  # 75% max loss for a stop-loss
LIQ_THRESHOLD_P = Decimal("0.9")  # 90% of collateral lost -> liquidation
MAX_OPEN_NEGATIVE_PNL_P = Decimal("0.4")  # leverage x price impact cap on open
MAX_WINDOWS_COUNT = 5


class TradingSettings(BaseSettings):
    """Trade validation and risk boundaries."""

    model_config = SettingsConfigDict(env_prefix="TRADING_")

    max_pnl_p: Decimal = MAX_PNL_P
    max_sl_p: Decimal = MAX_SL_P
    liq_threshold_p: Decimal = LIQ_THRESHOLD_P
    max_open_negative_pnl_p: Decimal = MAX_OPEN_NEGATIVE_PNL_P
    min_collateral_fee_multiple: Decimal = Decimal("5")  # collateral >= 5x min fee
    max_trades_per_pair: int = 3
    max_pending_orders: int = 3


class FeeSettings(BaseSettings):
    """Fee distribution parameters.

    Per-pair fee rates live in protocol storage (set by admin commands);
    these are the venue-wide splits and tier bookkeeping knobs.
    """

    model_config = SettingsConfigDict(env_prefix="FEES_")

    vault_fee_p: Decimal = Decimal("0.5")  # share of closing fee kept by the vault
    liq_fee_p: Decimal = Decimal("0.05")  # flat % of collateral on liquidation
    trigger_reward_p: Decimal = Decimal("0.2")  # share of trigger fee paid to triggerer
    fee_tier_trailing_days: int = 30
    seconds_per_day: int = 86400


class PriceImpactSettings(BaseSettings):
    """Sliding-window open interest configuration."""

    model_config = SettingsConfigDict(env_prefix="IMPACT_")

    max_windows_count: int = MAX_WINDOWS_COUNT


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"  # "json" or "console"
    staking_address: str = "staking"
    trading: TradingSettings = TradingSettings()
    fees: FeeSettings = FeeSettings()
    price_impact: PriceImpactSettings = PriceImpactSettings()
