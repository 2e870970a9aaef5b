"""
Dollar-Cost Averaging (DCA) Strategy

Buys a fixed USD amount of a target asset every `interval_hours`, paid from a
base asset (usually USDC).

Per run:
1. Not due yet -> NO_ACTION
2. Total-investment cap reached -> NO_ACTION (no further buys)
3. Base balance below the buy amount -> NO_ACTION
4. Quote base -> target; effective price = buy USD / output amount
5. Effective price outside [min_price, max_price] -> REJECTED and the
   schedule still advances one interval (no immediate retry)
6. Price impact above the ceiling (2%) -> REJECTED and the schedule
   advances one interval
7. Submit, record, advance the schedule by one interval
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from core.models import USDC_MINT, TradeAction
from strategy.base_strategy import BaseStrategy, StrategyConfig, StrategyOutcome

logger = logging.getLogger(__name__)


@dataclass
class DCAConfig(StrategyConfig):
    target_asset: str = ""
    target_symbol: str = ""
    base_asset: str = USDC_MINT
    base_symbol: str = "USDC"
    buy_amount_usd: float = 0.0
    interval_hours: float = 24.0
    max_total_investment: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    max_price_impact_pct: float = 2.0
    slippage_bps: int = 100
    start_immediately: bool = False


class DCAStrategy(BaseStrategy):
    """Scheduled accumulation of one asset."""

    kind = "dca"

    def __init__(self, config: DCAConfig, services, **kwargs):
        super().__init__(config, services, **kwargs)
        self.dca: DCAConfig = config
        self.total_invested = 0.0
        now = self._clock()
        self.next_execution_time: datetime = now if config.start_immediately else now + self.interval

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.dca.interval_hours)

    def validate(self) -> bool:
        cfg = self.dca
        if cfg.buy_amount_usd <= 0 or cfg.interval_hours <= 0:
            return False
        if not cfg.target_asset or not cfg.base_asset or cfg.target_asset == cfg.base_asset:
            return False
        if cfg.max_total_investment is not None and cfg.max_total_investment <= 0:
            return False
        if cfg.min_price is not None and cfg.max_price is not None and cfg.min_price > cfg.max_price:
            return False
        return True

    def describe(self) -> str:
        return f"DCA: buy ${self.dca.buy_amount_usd:g} of {self.dca.target_symbol} every {self.dca.interval_hours:g}h"

    def cap_reached(self) -> bool:
        cap = self.dca.max_total_investment
        return cap is not None and self.total_invested >= cap

    def _advance_schedule(self, now: datetime) -> None:
        self.next_execution_time = now + self.interval

    def evaluate(self, now: datetime) -> StrategyOutcome:
        cfg = self.dca

        if now < self.next_execution_time:
            minutes = (self.next_execution_time - now).total_seconds() / 60
            logger.debug(f"[{self.name}] next DCA buy in {minutes:.0f} minutes")
            return StrategyOutcome.NO_ACTION

        if self.cap_reached():
            logger.info(f"[{self.name}] 🛑 DCA cap reached: ${self.total_invested:.2f} >= ${cfg.max_total_investment:.2f}")
            return StrategyOutcome.NO_ACTION

        positions = self.services.positions()
        base = next((p for p in positions if p.asset == cfg.base_asset), None)
        if base is None or not base.current_price:
            logger.info(f"[{self.name}] no priced {cfg.base_symbol} balance found for DCA")
            return StrategyOutcome.NO_ACTION

        if base.value_usd < cfg.buy_amount_usd:
            logger.info(
                f"[{self.name}] insufficient {cfg.base_symbol}: ${base.value_usd:.2f} < ${cfg.buy_amount_usd:.2f}"
            )
            return StrategyOutcome.NO_ACTION

        amount_in = cfg.buy_amount_usd / base.current_price
        quote = self.services.quote(cfg.base_asset, cfg.target_asset, amount_in, cfg.slippage_bps)
        if quote.output_amount <= 0:
            logger.warning(f"[{self.name}] empty quote for {cfg.target_symbol}")
            return StrategyOutcome.FAILED

        effective_price = cfg.buy_amount_usd / quote.output_amount

        if cfg.min_price is not None and effective_price < cfg.min_price:
            logger.info(f"[{self.name}] ⏳ price ${effective_price:.6f} below floor ${cfg.min_price}")
            self._advance_schedule(now)
            return StrategyOutcome.REJECTED

        if cfg.max_price is not None and effective_price > cfg.max_price:
            logger.info(f"[{self.name}] ⏳ price ${effective_price:.6f} above ceiling ${cfg.max_price}")
            self._advance_schedule(now)
            return StrategyOutcome.REJECTED

        if quote.price_impact_pct > cfg.max_price_impact_pct:
            logger.info(f"[{self.name}] price impact too high for DCA: {quote.price_impact_pct:.2f}%")
            self._advance_schedule(now)
            return StrategyOutcome.REJECTED

        logger.info(
            f"[{self.name}] DCA buy: ${cfg.buy_amount_usd:g} -> {quote.output_amount:.6f} {cfg.target_symbol} "
            f"@ ${effective_price:.6f} (impact {quote.price_impact_pct:.2f}%)"
        )
        execution = self._submit(
            now,
            TradeAction.BUY,
            input_asset=cfg.base_asset,
            output_asset=cfg.target_asset,
            input_amount=amount_in,
            record_asset=cfg.target_asset,
            record_symbol=cfg.target_symbol,
            record_amount=quote.output_amount,
            price=effective_price,
            slippage_bps=cfg.slippage_bps,
        )
        self._advance_schedule(now)

        if not execution.success:
            logger.error(f"[{self.name}] ❌ DCA buy failed: {execution.error}")
            return StrategyOutcome.FAILED

        self.total_invested += cfg.buy_amount_usd
        logger.info(f"[{self.name}] ✅ DCA buy completed, next at {self.next_execution_time.isoformat()}")
        if self.cap_reached():
            logger.info(f"[{self.name}] investment cap reached, no further buys")
        return StrategyOutcome.EXECUTED

    def snapshot(self):
        data = super().snapshot()
        data["next_execution_time"] = self.next_execution_time.isoformat()
        data["total_invested"] = self.total_invested
        return data
