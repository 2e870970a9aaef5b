"""
Grid Trading Strategy

Laddered buy/sell levels across a price range for a base/quote pair.

Construction: `level_count` nominal prices spread evenly over
[price_min, price_max]; each yields a buy level at price * 0.99 and a sell
level at price * 1.01, each sized to an equal share of the investment.

Per run:
1. Sample the current price with a one-unit quote (base -> quote)
2. Stop-loss (drop below the range midpoint) or take-profit (realized profit
   vs investment) disables the strategy
3. Candidates: unfilled levels within 5% of the current price whose side
   condition holds (buy: price <= level, sell: price >= level)
4. Fill at most ONE level per run, the candidate closest to the price
5. With rebalance_on_fill, spawn the complementary level at +/-2% of the
   fill price

Active levels are capped at `max_active_levels` (default 2 x level_count).
When a spawn would exceed the cap, the oldest unfilled level on the same
side is evicted first (then the oldest overall). Filled levels move to a
bounded history.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, List, Optional

from core.models import USDC_MINT, TradeAction
from strategy.base_strategy import BaseStrategy, StrategyConfig, StrategyOutcome

logger = logging.getLogger(__name__)

BUY_OFFSET = 0.99
SELL_OFFSET = 1.01
SPAWN_STEP = 0.02
PRICE_TOLERANCE = 0.05
FILLED_HISTORY = 200


@dataclass
class GridLevel:
    price: float
    side: str  # "buy" | "sell"
    buy_amount: float = 0.0
    sell_amount: float = 0.0
    filled: bool = False
    sequence: int = 0
    entry_price: Optional[float] = None  # cost basis for spawned sell levels

    @property
    def amount(self) -> float:
        return self.buy_amount if self.side == "buy" else self.sell_amount


@dataclass
class GridConfig(StrategyConfig):
    base_asset: str = ""
    base_symbol: str = ""
    quote_asset: str = USDC_MINT
    quote_symbol: str = "USDC"
    level_count: int = 5
    price_min: float = 0.0
    price_max: float = 0.0
    investment_amount: float = 0.0
    rebalance_on_fill: bool = True
    stop_loss_pct: Optional[float] = None
    take_profit_pct: Optional[float] = None
    max_active_levels: Optional[int] = None
    slippage_bps: int = 100


class GridStrategy(BaseStrategy):
    """Price-laddered grid trading."""

    kind = "grid"

    def __init__(self, config: GridConfig, services, **kwargs):
        super().__init__(config, services, **kwargs)
        self.grid: GridConfig = config
        self.current_price = 0.0
        self.levels: List[GridLevel] = []
        self.filled_levels: Deque[GridLevel] = deque(maxlen=FILLED_HISTORY)
        self._sequence = 0
        self.evictions = 0
        if self.validate():
            self._initialize_grid()

    @property
    def level_cap(self) -> int:
        return self.grid.max_active_levels or 2 * self.grid.level_count

    def validate(self) -> bool:
        cfg = self.grid
        return (
            cfg.level_count > 2
            and cfg.price_min > 0
            and cfg.price_max > cfg.price_min
            and cfg.investment_amount > 0
            and bool(cfg.base_asset)
            and bool(cfg.quote_asset)
            and cfg.base_asset != cfg.quote_asset
            and (cfg.max_active_levels is None or cfg.max_active_levels >= 2)
        )

    def describe(self) -> str:
        cfg = self.grid
        return (
            f"Grid: {cfg.level_count} levels between ${cfg.price_min:g}-${cfg.price_max:g} "
            f"for {cfg.base_symbol}/{cfg.quote_symbol}"
        )

    def _next_sequence(self) -> int:
        self._sequence += 1
        return self._sequence

    def _initialize_grid(self) -> None:
        cfg = self.grid
        step = (cfg.price_max - cfg.price_min) / (cfg.level_count - 1)
        per_level = cfg.investment_amount / cfg.level_count

        levels = []
        for i in range(cfg.level_count):
            nominal = cfg.price_min + i * step
            buy_price = nominal * BUY_OFFSET
            sell_price = nominal * SELL_OFFSET
            levels.append(GridLevel(price=buy_price, side="buy", buy_amount=per_level / buy_price,
                                    sequence=self._next_sequence()))
            levels.append(GridLevel(price=sell_price, side="sell", sell_amount=per_level / sell_price,
                                    sequence=self._next_sequence()))

        levels.sort(key=lambda level: level.price)
        self.levels = levels
        logger.info(f"[{self.name}] 🔲 Grid initialized with {len(levels)} levels")

    def reset_grid(self) -> None:
        self.filled_levels.clear()
        self._initialize_grid()
        logger.info(f"[{self.name}] 🔄 Grid levels reset")

    def get_levels(self) -> List[GridLevel]:
        return list(self.levels)

    def active_levels(self) -> List[GridLevel]:
        return [level for level in self.levels if not level.filled]

    def _update_price(self) -> float:
        quote = self.services.quote(self.grid.base_asset, self.grid.quote_asset, 1.0, self.grid.slippage_bps)
        self.current_price = quote.output_amount
        return self.current_price

    def _stop_loss_hit(self) -> bool:
        cfg = self.grid
        if not cfg.stop_loss_pct or self.current_price <= 0:
            return False
        center = (cfg.price_min + cfg.price_max) / 2
        loss_pct = (center - self.current_price) / center * 100
        if loss_pct >= cfg.stop_loss_pct:
            logger.warning(f"[{self.name}] 🛑 Grid stop loss triggered: {loss_pct:.2f}% below range center")
            return True
        return False

    def _take_profit_hit(self) -> bool:
        cfg = self.grid
        if not cfg.take_profit_pct:
            return False
        profit_pct = self.config.total_profit / cfg.investment_amount * 100
        if profit_pct >= cfg.take_profit_pct:
            logger.info(f"[{self.name}] 🎯 Grid take profit triggered: {profit_pct:.2f}%")
            return True
        return False

    def triggered_levels(self, price: float) -> List[GridLevel]:
        """Unfilled levels within tolerance whose side condition holds, closest first."""
        if price <= 0:
            return []
        candidates = []
        for level in self.levels:
            if level.filled:
                continue
            if abs(level.price - price) / price > PRICE_TOLERANCE:
                continue
            if level.side == "buy" and price <= level.price:
                candidates.append(level)
            elif level.side == "sell" and price >= level.price:
                candidates.append(level)
        candidates.sort(key=lambda level: abs(level.price - price))
        return candidates

    def evaluate(self, now: datetime) -> StrategyOutcome:
        price = self._update_price()
        if price <= 0:
            logger.warning(f"[{self.name}] could not determine price for grid")
            return StrategyOutcome.FAILED

        if self._stop_loss_hit() or self._take_profit_hit():
            self.config.enabled = False
            logger.warning(f"[{self.name}] Grid strategy stopped by risk management")
            return StrategyOutcome.REJECTED

        candidates = self.triggered_levels(price)
        if not candidates:
            logger.debug(f"[{self.name}] no grid levels triggered at ${price:.4f}")
            return StrategyOutcome.NO_ACTION

        level = candidates[0]
        if self._fill_level(level, now):
            return StrategyOutcome.EXECUTED
        return StrategyOutcome.FAILED

    def _fill_level(self, level: GridLevel, now: datetime) -> bool:
        cfg = self.grid
        if level.side == "buy":
            logger.info(f"[{self.name}] 💰 Grid buy {level.buy_amount:.6f} {cfg.base_symbol} @ ${level.price:.4f}")
            execution = self._submit(
                now,
                TradeAction.BUY,
                input_asset=cfg.quote_asset,
                output_asset=cfg.base_asset,
                input_amount=level.price * level.buy_amount,
                record_asset=cfg.base_asset,
                record_symbol=cfg.base_symbol,
                record_amount=level.buy_amount,
                price=level.price,
                slippage_bps=cfg.slippage_bps,
            )
        else:
            profit = 0.0
            if level.entry_price is not None:
                profit = (level.price - level.entry_price) * level.sell_amount
            logger.info(f"[{self.name}] 💰 Grid sell {level.sell_amount:.6f} {cfg.base_symbol} @ ${level.price:.4f}")
            execution = self._submit(
                now,
                TradeAction.SELL,
                input_asset=cfg.base_asset,
                output_asset=cfg.quote_asset,
                input_amount=level.sell_amount,
                record_asset=cfg.base_asset,
                record_symbol=cfg.base_symbol,
                record_amount=level.sell_amount,
                price=level.price,
                slippage_bps=cfg.slippage_bps,
                realized_profit=profit,
            )

        if not execution.success:
            logger.error(f"[{self.name}] ❌ Grid {level.side} at ${level.price:.4f} failed: {execution.error}")
            return False

        level.filled = True
        self.levels.remove(level)
        self.filled_levels.append(level)
        logger.info(f"[{self.name}] ✅ Grid {level.side} level filled at ${level.price:.4f}")

        if cfg.rebalance_on_fill:
            self._spawn_complement(level)
        return True

    def _spawn_complement(self, filled: GridLevel) -> None:
        if filled.side == "buy":
            spawned = GridLevel(
                price=filled.price * (1 + SPAWN_STEP),
                side="sell",
                sell_amount=filled.buy_amount,
                sequence=self._next_sequence(),
                entry_price=filled.price,
            )
        else:
            spawned = GridLevel(
                price=filled.price * (1 - SPAWN_STEP),
                side="buy",
                buy_amount=filled.sell_amount,
                sequence=self._next_sequence(),
            )

        while len(self.active_levels()) >= self.level_cap:
            self._evict_for(spawned.side)

        self.levels.append(spawned)
        self.levels.sort(key=lambda level: level.price)
        logger.info(f"[{self.name}] 🔲 Created {spawned.side} level at ${spawned.price:.4f}")

    def _evict_for(self, side: str) -> None:
        unfilled = self.active_levels()
        same_side = [level for level in unfilled if level.side == side]
        pool = same_side or unfilled
        oldest = min(pool, key=lambda level: level.sequence)
        self.levels.remove(oldest)
        self.evictions += 1
        logger.info(f"[{self.name}] evicted oldest {oldest.side} level at ${oldest.price:.4f} (cap {self.level_cap})")

    def snapshot(self):
        data = super().snapshot()
        data["current_price"] = self.current_price
        data["active_levels"] = len(self.active_levels())
        data["filled_levels"] = len(self.filled_levels)
        return data
