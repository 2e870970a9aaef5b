"""
solharvest Core: Auto Trader

Executes the scanner's current opportunity set under global safety rails:
- Nothing happens unless auto trading is enabled
- Daily trade cap, reserved atomically per opportunity
- Pre-trade quote; price impact above the configured ceiling is a policy
  rejection (no record, slot released)
- Pacing delay between consecutive trade attempts
- Every attempt, successful or not, becomes a TradeExecution in a bounded
  in-memory tail and is appended to the persistence store

A failed swap is recorded and not retried within the same cycle; the next
cycle re-evaluates the opportunity from fresh positions.
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional

from core.exceptions import ConfigurationInvalid
from core.interfaces import PersistenceStore
from core.models import TradeAction, TradeExecution, TradingOpportunity, new_id, utc_now
from core.trade_limits import DailyTradeLimit
from core.trading_config import ConfigStore, TradingSettings

logger = logging.getLogger(__name__)

HISTORY_SIZE = 1000


@dataclass
class AutoTraderStats:
    trades_executed: int = 0
    successful_trades: int = 0
    failed_trades: int = 0
    rejected_opportunities: int = 0
    total_proceeds: float = 0.0  # settlement-asset units
    last_trade_time: Optional[datetime] = None
    start_time: datetime = field(default_factory=utc_now)


class AutoTrader:
    """
    Turns TradingOpportunities into swaps.

    Usage:
        trader = AutoTrader(services, config_store, DailyTradeLimit(10))
        trader.enable_auto_trading()
        executions = trader.process_opportunities(scanner.current_opportunities())
    """

    def __init__(
        self,
        services,
        config_store: ConfigStore,
        daily_limit: Optional[DailyTradeLimit] = None,
        store: Optional[PersistenceStore] = None,
        metrics: Any = None,
        sleep: Callable[[float], None] = time.sleep,
        history_size: int = HISTORY_SIZE,
    ):
        self.services = services
        self.config_store = config_store
        self.store = store
        self.metrics = metrics
        self._sleep = sleep

        settings = config_store.get_settings()
        self.daily_limit = daily_limit or DailyTradeLimit(settings.risk_management.max_daily_trades)
        if store is not None:
            self.daily_limit.restore(store.load_daily_counter())

        self._enabled = False
        self._history: Deque[TradeExecution] = deque(maxlen=history_size)
        self._history_lock = threading.Lock()
        self.stats = AutoTraderStats()

    @property
    def is_enabled(self) -> bool:
        return self._enabled

    def enable_auto_trading(self) -> None:
        if self._enabled:
            logger.info("Auto trading is already enabled")
            return

        dry_run = self.config_store.get_settings().execution.dry_run
        logger.info(f"🚀 Enabling auto trading ({'DRY RUN' if dry_run else 'LIVE'})")
        if not dry_run:
            logger.warning("⚠️ LIVE TRADING MODE ENABLED: real swaps will be submitted")
        self._enabled = True

    def disable_auto_trading(self) -> None:
        if not self._enabled:
            logger.info("Auto trading is already disabled")
            return
        self._enabled = False
        logger.info("🛑 Auto trading disabled")

    def set_daily_trade_limit(self, limit: int) -> None:
        self.daily_limit.set_limit(limit)

    def process_opportunities(
        self,
        opportunities: List[TradingOpportunity],
        settings: Optional[TradingSettings] = None,
    ) -> List[TradeExecution]:
        """
        Attempt trades for `opportunities` in the given (priority) order.

        Args:
            opportunities: The scanner's current set
            settings: Settings for this cycle (re-read from the store if omitted)

        Returns:
            Executions recorded this call (policy-rejected opportunities
            produce no record)
        """
        if not self._enabled or not opportunities:
            return []

        settings = settings or self.config_store.get_settings()
        self.daily_limit.set_limit(settings.risk_management.max_daily_trades)
        self.daily_limit.reset_if_new_day()

        if self.daily_limit.is_exhausted():
            logger.info(f"⏸️ Daily trade limit reached ({self.daily_limit.max_trades}), skipping trades for today")
            return []

        logger.info(f"🤖 Processing {len(opportunities)} trading opportunities")
        executions: List[TradeExecution] = []
        pacing = settings.execution.trade_pacing_seconds
        attempted = False

        for opportunity in opportunities:
            if not self._enabled:
                logger.info("Auto trading disabled mid-cycle, leaving remaining opportunities")
                break

            if attempted and pacing > 0:
                self._sleep(pacing)

            if not self.daily_limit.try_consume():
                logger.info("⏸️ Daily trade limit reached during execution")
                break

            execution = self._execute_opportunity(opportunity, settings)
            if execution is None:
                self.daily_limit.release()
                self.stats.rejected_opportunities += 1
                continue

            attempted = True
            executions.append(execution)
            self._record(execution)

        if executions:
            logger.info(
                f"✅ Processed {len(executions)} trades "
                f"({self.daily_limit.count}/{self.daily_limit.max_trades} today)"
            )
            self._persist_daily_counter()
        return executions

    def _execute_opportunity(
        self, opportunity: TradingOpportunity, settings: TradingSettings
    ) -> Optional[TradeExecution]:
        execution_cfg = settings.execution
        dry_run = execution_cfg.dry_run
        if not isinstance(dry_run, bool):
            raise ConfigurationInvalid(f"Execution mode undeterminable: dry_run={dry_run!r}")

        position = opportunity.position
        output_asset = execution_cfg.settlement_asset
        slippage_bps = execution_cfg.slippage_bps
        sell_amount = opportunity.sell_amount

        if position.asset == output_asset:
            logger.info(f"{position.symbol} is the settlement asset, nothing to swap")
            return None
        if sell_amount <= 0:
            return None

        logger.info(
            f"🎯 {position.symbol}: +{opportunity.profit_pct:.2f}% hit {opportunity.target_name or opportunity.target_id}, "
            f"selling {opportunity.sell_pct}% ({sell_amount:.6f})"
        )

        execution = TradeExecution(
            id=new_id("trade"),
            timestamp=utc_now(),
            action=TradeAction.SELL,
            asset=position.asset,
            symbol=position.symbol,
            amount=sell_amount,
            price=position.current_price,
            success=False,
            dry_run=dry_run,
            output_asset=output_asset,
            profit_pct=opportunity.profit_pct,
            target_id=opportunity.target_id,
            slippage_bps=slippage_bps,
        )

        try:
            quote = self.services.quote(position.asset, output_asset, sell_amount, slippage_bps)
        except Exception as e:
            execution.error = f"Quote failed: {e}"
            logger.error(f"❌ {position.symbol}: {execution.error}")
            return execution

        if quote.price_impact_pct > execution_cfg.max_price_impact_pct:
            logger.info(
                f"{position.symbol}: price impact {quote.price_impact_pct:.2f}% exceeds "
                f"{execution_cfg.max_price_impact_pct:.2f}%, skipping"
            )
            return None

        try:
            result = self.services.execute_swap(position.asset, output_asset, sell_amount, slippage_bps, dry_run)
        except ConfigurationInvalid:
            raise
        except Exception as e:
            execution.error = str(e) or type(e).__name__
            execution.price_impact_pct = quote.price_impact_pct
            logger.error(f"❌ {position.symbol}: trade execution error: {execution.error}", exc_info=True)
            return execution

        execution.success = result.success
        execution.amount_out = result.output_amount
        execution.price_impact_pct = result.price_impact_pct
        execution.signature = result.signature
        execution.error = result.error

        if result.success:
            mode = "DRY RUN" if dry_run else f"tx {result.signature}"
            logger.info(
                f"✅ {position.symbol}: received {result.output_amount:.6f}, "
                f"impact {result.price_impact_pct:.4f}% ({mode})"
            )
        else:
            logger.error(f"❌ {position.symbol}: trade failed: {result.error}")
        return execution

    def _record(self, execution: TradeExecution) -> None:
        with self._history_lock:
            self._history.append(execution)
            self.stats.trades_executed += 1
            if execution.success:
                self.stats.successful_trades += 1
                self.stats.total_proceeds += execution.amount_out or 0.0
            else:
                self.stats.failed_trades += 1
            self.stats.last_trade_time = execution.timestamp

        if self.metrics is not None:
            self.metrics.record_trade(execution.dry_run, execution.success)

        if self.store is not None:
            try:
                self.store.append_execution(execution.to_dict())
            except OSError as e:
                logger.warning(f"Failed to persist execution {execution.id}: {e}")

    def _persist_daily_counter(self) -> None:
        if self.store is None:
            return
        try:
            self.store.save_daily_counter(self.daily_limit.snapshot())
        except OSError as e:
            logger.warning(f"Failed to persist daily trade counter: {e}")

    def get_recent_executions(self, n: int = 10) -> List[TradeExecution]:
        """Newest-last tail of the in-memory execution history."""
        if n <= 0:
            return []
        with self._history_lock:
            return list(self._history)[-n:]

    def get_execution_history(self) -> List[TradeExecution]:
        with self._history_lock:
            return list(self._history)

    def get_stats(self) -> Dict[str, Any]:
        with self._history_lock:
            stats = self.stats
            return {
                "enabled": self._enabled,
                "trades_executed": stats.trades_executed,
                "successful_trades": stats.successful_trades,
                "failed_trades": stats.failed_trades,
                "rejected_opportunities": stats.rejected_opportunities,
                "total_proceeds": stats.total_proceeds,
                "last_trade_time": stats.last_trade_time.isoformat() if stats.last_trade_time else None,
                "daily_trade_count": self.daily_limit.count,
                "daily_trade_limit": self.daily_limit.max_trades,
                "uptime_seconds": (utc_now() - stats.start_time).total_seconds(),
            }
