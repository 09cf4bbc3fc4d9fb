"""Command dispatcher.

Wires the borrowing, price impact, fee and lifecycle components over one
storage and runs each command inside a storage transaction. The resulting
transfers are submitted to the settlement channel inside that transaction,
so a channel that raises rolls the command back.

Usage:
    engine = TradingEngine(InMemoryStorage(), oracle, RecordingSettlement())
    engine.execute(SetCollaterals({0: "uusdc"}), env)
    result = engine.execute(OpenTrade(...), env)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from perp import commands
from perp.borrowing import BorrowingEngine
from perp.config import AppSettings
from perp.exceptions import PerpError
from perp.fees import FeeTierRegistry
from perp.ledger import Ledger
from perp.logging import command_context, get_logger
from perp.models import CommandResult, Env, Trade, Transfer
from perp.pairs import PairRegistry
from perp.price_impact import PriceImpactEngine
from perp.storage import SINGLETON, Table
from perp.trading.lifecycle import TradeLifecycle

if TYPE_CHECKING:
    from perp.oracle import PriceOracle
    from perp.settlement import SettlementChannel
    from perp.storage import Storage

logger = get_logger(__name__)

Handler = Callable[[Any, Env], CommandResult]


class TradingEngine:
    """Entry point executing commands all-or-nothing.

    Args:
        storage: Transactional keyed storage.
        oracle: Asset and collateral price source.
        settlement: Channel receiving transfers of successful commands.
        settings: Application settings. Loaded from the environment if None.
    """

    def __init__(
        self,
        storage: Storage,
        oracle: PriceOracle,
        settlement: SettlementChannel,
        settings: AppSettings | None = None,
    ) -> None:
        self._storage = storage
        self._settlement = settlement
        self._settings = settings or AppSettings()

        self.pairs = PairRegistry(storage)
        self.ledger = Ledger(storage)
        self.borrowing = BorrowingEngine(storage)
        self.price_impact = PriceImpactEngine(storage, self._settings.price_impact)
        self.fee_tiers = FeeTierRegistry(storage, self._settings.fees)
        self.lifecycle = TradeLifecycle(
            storage,
            oracle,
            self.borrowing,
            self.price_impact,
            self.pairs,
            self.fee_tiers,
            self.ledger,
            self._settings,
        )

        self._handlers: dict[type, Handler] = {
            commands.OpenTrade: self._open_trade,
            commands.UpdateOpenOrder: self._update_open_order,
            commands.CancelOpenOrder: self._cancel_open_order,
            commands.UpdateTakeProfit: self._update_tp,
            commands.UpdateStopLoss: self._update_sl,
            commands.TriggerOrder: self._trigger_order,
            commands.CloseTradeMarket: self._close_trade_market,
            commands.SetPairs: self._set_pairs,
            commands.SetGroups: self._set_groups,
            commands.SetFees: self._set_fees,
            commands.SetPairCustomMaxLeverage: self._set_pair_custom_max_leverage,
            commands.SetCollaterals: self._set_collaterals,
            commands.SetBorrowingPairParams: self._set_borrowing_pair_params,
            commands.SetBorrowingGroupParams: self._set_borrowing_group_params,
            commands.SetOpenInterestCaps: self._set_open_interest_caps,
            commands.SetOiWindowsSettings: self._set_oi_windows_settings,
            commands.SetPairDepths: self._set_pair_depths,
            commands.SetFeeTiers: self._set_fee_tiers,
            commands.SetTradingActivated: self._set_trading_activated,
            commands.FundVault: self._fund_vault,
            commands.ClaimGovFees: self._claim_gov_fees,
        }

    def execute(self, command: commands.Command, env: Env) -> CommandResult:
        """Run one command.

        Either every state change and transfer of the command takes effect,
        or none does.

        Raises:
            PerpError: Any validation, sequencing, arithmetic or external
                failure. State is unchanged and nothing is settled.
            TypeError: If the command type is unknown.

        A settlement channel error propagates unchanged after the rollback.
        """
        handler = self._handlers.get(type(command))
        if handler is None:
            raise TypeError(f"Unsupported command {type(command).__name__}")

        action = type(command).__name__
        with command_context(action, env):
            try:
                with self._storage.transaction():
                    result = handler(command, env)
                    transfers = [t for t in result.transfers if t.amount > 0]
                    if transfers:
                        self._settlement.submit(transfers)
            except PerpError as e:
                logger.info("command_rejected", error_type=type(e).__name__, error=str(e))
                raise

            logger.info("command_executed", action=result.action, transfers=len(transfers))
            return result

    # ──────────────────────────────────────────────
    # Trader commands
    # ──────────────────────────────────────────────

    def _open_trade(self, cmd: commands.OpenTrade, env: Env) -> CommandResult:
        trade = Trade(
            user=env.sender,
            pair_index=cmd.pair_index,
            index=0,
            collateral_index=cmd.collateral_index,
            collateral_amount=cmd.collateral_amount,
            leverage=cmd.leverage,
            long=cmd.long,
            trade_type=cmd.trade_type,
            open_price=cmd.open_price,
            tp=cmd.tp,
            sl=cmd.sl,
        )
        return self.lifecycle.open_trade(trade, cmd.max_slippage_p, env)

    def _update_open_order(self, cmd: commands.UpdateOpenOrder, env: Env) -> CommandResult:
        return self.lifecycle.update_open_order(
            env.sender, cmd.pair_index, cmd.index, cmd.price, cmd.tp, cmd.sl,
            cmd.max_slippage_p, env,
        )

    def _cancel_open_order(self, cmd: commands.CancelOpenOrder, env: Env) -> CommandResult:
        return self.lifecycle.cancel_open_order(env.sender, cmd.pair_index, cmd.index, env)

    def _update_tp(self, cmd: commands.UpdateTakeProfit, env: Env) -> CommandResult:
        return self.lifecycle.update_tp(env.sender, cmd.pair_index, cmd.index, cmd.tp, env)

    def _update_sl(self, cmd: commands.UpdateStopLoss, env: Env) -> CommandResult:
        return self.lifecycle.update_sl(env.sender, cmd.pair_index, cmd.index, cmd.sl, env)

    def _trigger_order(self, cmd: commands.TriggerOrder, env: Env) -> CommandResult:
        return self.lifecycle.trigger_order(
            cmd.order_type, cmd.user, cmd.pair_index, cmd.index, env
        )

    def _close_trade_market(self, cmd: commands.CloseTradeMarket, env: Env) -> CommandResult:
        return self.lifecycle.close_trade_market(env.sender, cmd.pair_index, cmd.index, env)

    # ──────────────────────────────────────────────
    # Admin commands
    # ──────────────────────────────────────────────

    def _set_pairs(self, cmd: commands.SetPairs, env: Env) -> CommandResult:
        for pair_index, pair in cmd.pairs.items():
            self.pairs.set_pair(pair_index, pair)
        return CommandResult(action="set_pairs", attributes={"count": str(len(cmd.pairs))})

    def _set_groups(self, cmd: commands.SetGroups, env: Env) -> CommandResult:
        for group_index, group in cmd.groups.items():
            self.pairs.set_group(group_index, group)
        return CommandResult(action="set_groups", attributes={"count": str(len(cmd.groups))})

    def _set_fees(self, cmd: commands.SetFees, env: Env) -> CommandResult:
        for fee_index, fee in cmd.fees.items():
            self.pairs.set_fee(fee_index, fee)
        return CommandResult(action="set_fees", attributes={"count": str(len(cmd.fees))})

    def _set_pair_custom_max_leverage(
        self, cmd: commands.SetPairCustomMaxLeverage, env: Env
    ) -> CommandResult:
        self.pairs.set_pair_custom_max_leverage(cmd.pair_index, cmd.max_leverage)
        return CommandResult(
            action="set_pair_custom_max_leverage",
            attributes={"pair_index": str(cmd.pair_index), "max_leverage": str(cmd.max_leverage)},
        )

    def _set_collaterals(self, cmd: commands.SetCollaterals, env: Env) -> CommandResult:
        for collateral_index, denom in cmd.collaterals.items():
            self.pairs.set_collateral(collateral_index, denom)
        return CommandResult(
            action="set_collaterals", attributes={"count": str(len(cmd.collaterals))}
        )

    def _set_borrowing_pair_params(
        self, cmd: commands.SetBorrowingPairParams, env: Env
    ) -> CommandResult:
        self.borrowing.set_pair_params(
            cmd.collateral_index,
            cmd.pair_index,
            cmd.group_index,
            cmd.fee_per_block,
            cmd.fee_exponent,
            cmd.max_oi,
            env.height,
        )
        return CommandResult(
            action="set_borrowing_pair_params",
            attributes={"pair_index": str(cmd.pair_index), "group_index": str(cmd.group_index)},
        )

    def _set_borrowing_group_params(
        self, cmd: commands.SetBorrowingGroupParams, env: Env
    ) -> CommandResult:
        self.borrowing.set_group_params(
            cmd.collateral_index,
            cmd.group_index,
            cmd.fee_per_block,
            cmd.fee_exponent,
            cmd.max_oi,
            env.height,
        )
        return CommandResult(
            action="set_borrowing_group_params",
            attributes={"group_index": str(cmd.group_index)},
        )

    def _set_open_interest_caps(self, cmd: commands.SetOpenInterestCaps, env: Env) -> CommandResult:
        for pair_index, max_oi in cmd.pair_caps.items():
            self.borrowing.set_pair_max_oi(cmd.collateral_index, pair_index, max_oi)
        for group_index, max_oi in cmd.group_caps.items():
            self.borrowing.set_group_max_oi(cmd.collateral_index, group_index, max_oi)
        logger.info(
            "open_interest_caps_set",
            collateral_index=cmd.collateral_index,
            pairs=len(cmd.pair_caps),
            groups=len(cmd.group_caps),
        )
        return CommandResult(action="set_open_interest_caps")

    def _set_oi_windows_settings(
        self, cmd: commands.SetOiWindowsSettings, env: Env
    ) -> CommandResult:
        start_ts = env.time if cmd.start_ts is None else cmd.start_ts
        self.price_impact.set_windows_settings(start_ts, cmd.windows_duration, cmd.windows_count)
        return CommandResult(action="set_oi_windows_settings", attributes={"start_ts": str(start_ts)})

    def _set_pair_depths(self, cmd: commands.SetPairDepths, env: Env) -> CommandResult:
        for pair_index, depth in cmd.depths.items():
            self.price_impact.set_pair_depth(
                pair_index, depth.one_percent_depth_above_usd, depth.one_percent_depth_below_usd
            )
        return CommandResult(action="set_pair_depths", attributes={"count": str(len(cmd.depths))})

    def _set_fee_tiers(self, cmd: commands.SetFeeTiers, env: Env) -> CommandResult:
        self.fee_tiers.set_fee_tiers(cmd.tiers)
        return CommandResult(action="set_fee_tiers", attributes={"count": str(len(cmd.tiers))})

    def _set_trading_activated(self, cmd: commands.SetTradingActivated, env: Env) -> CommandResult:
        self._storage.set(Table.TRADING_ACTIVATED, SINGLETON, cmd.state)
        logger.info("trading_activated_set", state=cmd.state.value)
        return CommandResult(action="set_trading_activated", attributes={"state": cmd.state.value})

    def _fund_vault(self, cmd: commands.FundVault, env: Env) -> CommandResult:
        self.pairs.get_collateral(cmd.collateral_index)
        self.ledger.fund_vault(cmd.collateral_index, cmd.amount)
        return CommandResult(
            action="fund_vault",
            attributes={"collateral_index": str(cmd.collateral_index), "amount": str(cmd.amount)},
        )

    def _claim_gov_fees(self, cmd: commands.ClaimGovFees, env: Env) -> CommandResult:
        denom = self.pairs.get_collateral(cmd.collateral_index).denom
        amount = self.ledger.claim_gov_fees(cmd.collateral_index)
        return CommandResult(
            action="claim_gov_fees",
            transfers=[Transfer(cmd.recipient, denom, amount)],
            attributes={"collateral_index": str(cmd.collateral_index), "amount": str(amount)},
        )
