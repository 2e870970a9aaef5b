"""
Portfolio Rebalance Strategy

Keeps the portfolio close to target allocations.

- Each target has its own deviation threshold; a target whose current share
  deviates by at least that much gets a buy or sell action sized to close the
  gap, and actions worth less than `min_trade_size_usd` are dropped
- A rebalance runs only when the minimum interval since the last rebalance
  has elapsed, OR when the emergency override fires (worst deviation at or
  above `emergency_deviation_pct`), which bypasses the interval gate
- Sells execute before buys and route to the stable asset; buys are funded
  from the stable asset when it has enough value, otherwise from any other
  held asset that does; a leg with no funding source is skipped and logged
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from core.models import SOL_MINT, USDC_MINT, Position, TradeAction
from strategy.base_strategy import BaseStrategy, StrategyConfig, StrategyOutcome

logger = logging.getLogger(__name__)

SUM_TOLERANCE_PCT = 0.01


@dataclass
class AllocationTarget:
    asset: str
    symbol: str
    target_pct: float
    threshold_pct: float = 5.0


@dataclass(frozen=True)
class RebalanceAction:
    asset: str
    symbol: str
    current_pct: float
    target_pct: float
    deviation: float
    action: str  # "buy" | "sell" | "hold"
    trade_value_usd: float


@dataclass
class RebalanceConfig(StrategyConfig):
    targets: List[AllocationTarget] = field(default_factory=list)
    rebalance_threshold_pct: float = 5.0
    min_interval_hours: float = 24.0
    max_slippage_pct: float = 1.0
    min_trade_size_usd: float = 10.0
    emergency_enabled: bool = False
    emergency_deviation_pct: float = 20.0
    stable_asset: str = USDC_MINT
    stable_symbol: str = "USDC"


class RebalanceStrategy(BaseStrategy):
    """Target-allocation rebalancing."""

    kind = "rebalance"

    def __init__(self, config: RebalanceConfig, services, **kwargs):
        super().__init__(config, services, **kwargs)
        self.rebalance: RebalanceConfig = config
        self.last_rebalance: Optional[datetime] = None

    @property
    def slippage_bps(self) -> int:
        return int(round(self.rebalance.max_slippage_pct * 100))

    def validate(self) -> bool:
        cfg = self.rebalance
        total = sum(t.target_pct for t in cfg.targets)
        assets = [t.asset for t in cfg.targets]
        if abs(total - 100.0) > SUM_TOLERANCE_PCT + 1e-9:
            return False
        if len(cfg.targets) <= 1 or len(set(assets)) != len(assets):
            return False
        if any(t.threshold_pct <= 0 or t.target_pct < 0 for t in cfg.targets):
            return False
        if cfg.rebalance_threshold_pct <= 0 or cfg.min_interval_hours <= 0:
            return False
        if cfg.max_slippage_pct <= 0 or cfg.min_trade_size_usd <= 0:
            return False
        if cfg.emergency_enabled and cfg.emergency_deviation_pct <= cfg.rebalance_threshold_pct:
            return False
        return True

    def describe(self) -> str:
        targets = ", ".join(f"{t.symbol}: {t.target_pct:g}%" for t in self.rebalance.targets)
        return f"Rebalance: {targets}"

    def _allocations(self, positions: List[Position]) -> Dict[str, float]:
        total = sum(p.value_usd for p in positions)
        if total <= 0:
            return {}
        allocations: Dict[str, float] = {}
        for position in positions:
            allocations[position.asset] = allocations.get(position.asset, 0.0) + position.value_usd / total * 100
        return allocations

    def compute_actions(self, positions: List[Position]) -> List[RebalanceAction]:
        """One action per target (hold included), before the min-trade filter."""
        total = sum(p.value_usd for p in positions)
        allocations = self._allocations(positions)
        actions = []
        for target in self.rebalance.targets:
            current = allocations.get(target.asset, 0.0)
            deviation = abs(current - target.target_pct)
            action = "hold"
            value = 0.0
            if deviation >= target.threshold_pct:
                action = "buy" if current < target.target_pct else "sell"
                value = deviation / 100 * total
            actions.append(
                RebalanceAction(
                    asset=target.asset,
                    symbol=target.symbol,
                    current_pct=current,
                    target_pct=target.target_pct,
                    deviation=deviation,
                    action=action,
                    trade_value_usd=value,
                )
            )
        return actions

    def current_deviations(self) -> List[RebalanceAction]:
        return self.compute_actions(self.services.positions())

    def _interval_elapsed(self, now: datetime) -> bool:
        if self.last_rebalance is None:
            return True
        return now - self.last_rebalance >= timedelta(hours=self.rebalance.min_interval_hours)

    def evaluate(self, now: datetime) -> StrategyOutcome:
        cfg = self.rebalance
        positions = self.services.positions()
        portfolio_value = sum(p.value_usd for p in positions)

        if portfolio_value < cfg.min_trade_size_usd:
            logger.info(f"[{self.name}] portfolio value too small for rebalancing: ${portfolio_value:.2f}")
            return StrategyOutcome.NO_ACTION

        all_actions = self.compute_actions(positions)
        actions = [
            a for a in all_actions
            if a.action != "hold" and a.trade_value_usd >= cfg.min_trade_size_usd
        ]
        if not actions:
            logger.debug(f"[{self.name}] portfolio is balanced")
            return StrategyOutcome.NO_ACTION

        max_deviation = max(a.deviation for a in actions)
        emergency = cfg.emergency_enabled and max_deviation >= cfg.emergency_deviation_pct

        if not self._interval_elapsed(now) and not emergency:
            remaining = self.last_rebalance + timedelta(hours=cfg.min_interval_hours) - now
            logger.info(f"[{self.name}] ⏳ rebalance interval not met: {remaining.total_seconds() / 60:.0f} minutes remaining")
            return StrategyOutcome.NO_ACTION

        if max_deviation < cfg.rebalance_threshold_pct and not emergency:
            logger.info(f"[{self.name}] deviation {max_deviation:.2f}% below threshold {cfg.rebalance_threshold_pct}%")
            return StrategyOutcome.REJECTED

        if emergency:
            logger.warning(f"[{self.name}] 🚨 Emergency rebalance triggered: {max_deviation:.2f}% deviation")
        else:
            logger.info(f"[{self.name}] 📊 Rebalancing, max deviation {max_deviation:.2f}%")

        for a in all_actions:
            logger.info(f"[{self.name}]   {a.symbol}: {a.current_pct:.1f}% -> {a.target_pct:g}% ({a.action})")

        ordered = [a for a in actions if a.action == "sell"] + [a for a in actions if a.action == "buy"]
        attempted = 0
        succeeded = 0
        for action in ordered:
            if action.action == "sell":
                result = self._sell_leg(action, positions, now)
            else:
                result = self._buy_leg(action, positions, now)
            if result is None:
                continue
            attempted += 1
            if result:
                succeeded += 1

        self.last_rebalance = now

        if succeeded:
            logger.info(
                f"[{self.name}] ✅ Rebalance completed: {succeeded}/{attempted} actions successful"
                f"{' (DRY RUN)' if self.dry_run else ''}"
            )
            return StrategyOutcome.EXECUTED
        if attempted == 0:
            return StrategyOutcome.NO_ACTION
        logger.error(f"[{self.name}] ❌ Rebalance failed: no actions were successful")
        return StrategyOutcome.FAILED

    def _sell_leg(self, action: RebalanceAction, positions: List[Position], now: datetime) -> Optional[bool]:
        cfg = self.rebalance
        position = next((p for p in positions if p.asset == action.asset), None)
        if position is None or not position.current_price:
            logger.info(f"[{self.name}] cannot sell {action.symbol}: position not found")
            return None

        destination = cfg.stable_asset if action.asset != cfg.stable_asset else SOL_MINT
        amount = min(action.trade_value_usd / position.current_price, position.quantity)
        profit = 0.0
        if position.entry_price:
            profit = (position.current_price - position.entry_price) * amount

        logger.info(f"[{self.name}] 💰 Rebalance sell ${action.trade_value_usd:.2f} of {action.symbol}")
        execution = self._submit(
            now,
            TradeAction.SELL,
            input_asset=action.asset,
            output_asset=destination,
            input_amount=amount,
            record_asset=action.asset,
            record_symbol=action.symbol,
            record_amount=amount,
            price=position.current_price,
            slippage_bps=self.slippage_bps,
            realized_profit=profit,
        )
        return execution.success

    def _funding_source(self, action: RebalanceAction, positions: List[Position]) -> Optional[Position]:
        candidates = [
            p for p in positions
            if p.asset != action.asset and p.current_price and p.value_usd >= action.trade_value_usd
        ]
        stable = [p for p in candidates if p.asset == self.rebalance.stable_asset]
        if stable:
            return stable[0]
        return candidates[0] if candidates else None

    def _buy_leg(self, action: RebalanceAction, positions: List[Position], now: datetime) -> Optional[bool]:
        source = self._funding_source(action, positions)
        if source is None:
            logger.info(f"[{self.name}] no funding source with ${action.trade_value_usd:.2f} for buying {action.symbol}, skipped")
            return None

        held = next((p for p in positions if p.asset == action.asset), None)
        price = held.current_price if held is not None else None
        record_amount = action.trade_value_usd / price if price else None

        logger.info(f"[{self.name}] 💰 Rebalance buy ${action.trade_value_usd:.2f} of {action.symbol} (from {source.symbol})")
        execution = self._submit(
            now,
            TradeAction.BUY,
            input_asset=source.asset,
            output_asset=action.asset,
            input_amount=action.trade_value_usd / source.current_price,
            record_asset=action.asset,
            record_symbol=action.symbol,
            record_amount=record_amount,
            price=price,
            slippage_bps=self.slippage_bps,
        )
        return execution.success

    def add_target(self, target: AllocationTarget) -> None:
        if any(t.asset == target.asset for t in self.rebalance.targets):
            raise ValueError(f"Allocation target for {target.symbol} already exists")
        self.rebalance.targets.append(target)
        if not self.validate():
            logger.warning(f"[{self.name}] allocation targets no longer valid after adding {target.symbol}")

    def remove_target(self, asset: str) -> bool:
        before = len(self.rebalance.targets)
        self.rebalance.targets = [t for t in self.rebalance.targets if t.asset != asset]
        removed = len(self.rebalance.targets) != before
        if removed and not self.validate():
            logger.warning(f"[{self.name}] allocation targets no longer valid after removing {asset}")
        return removed

    def update_target(self, asset: str, target_pct: Optional[float] = None, threshold_pct: Optional[float] = None) -> bool:
        for target in self.rebalance.targets:
            if target.asset == asset:
                if target_pct is not None:
                    target.target_pct = target_pct
                if threshold_pct is not None:
                    target.threshold_pct = threshold_pct
                return True
        return False

    def snapshot(self):
        data = super().snapshot()
        data["last_rebalance"] = self.last_rebalance.isoformat() if self.last_rebalance else None
        return data
