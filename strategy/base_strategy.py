"""
Base Strategy Interface for Automated Strategies

Shared lifecycle contract for every strategy kind (DCA, grid, rebalance):

- validate(): structural check of the strategy's config, run at creation
- should_run(): enabled flag + minimum cooldown since the last execution
- run()/execute(): one state transition; reads positions and quotes through
  the services gateway, submits at most the strategy's own actions in its
  current dry-run/live mode, records each attempt

Single-owner discipline: run() holds a per-instance lock (non-blocking), so
a strategy is never re-entered while a previous run of the same instance is
still in flight; the overlapping call is reported as SKIPPED.

Outcomes separate policy rejection (REJECTED, not an error) from execution
failure (FAILED) and from "nothing to do" (NO_ACTION).
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from core.exceptions import ConfigurationInvalid
from core.models import SwapResult, TradeAction, TradeExecution, new_id, utc_now

logger = logging.getLogger(__name__)

MIN_EXECUTION_INTERVAL = timedelta(seconds=60)


@dataclass
class StrategyConfig:
    """
    Fields common to every strategy kind.

    Owned by its strategy instance; counters only increase and timestamps
    only move forward.
    """
    id: str
    name: str
    enabled: bool = True
    dry_run: bool = True
    created_at: datetime = field(default_factory=utc_now)
    last_execution: Optional[datetime] = None
    execution_count: int = 0
    total_profit: float = 0.0
    max_drawdown: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, datetime):
                data[key] = value.isoformat()
        return data


class StrategyOutcome(Enum):
    EXECUTED = "executed"    # an action was submitted and succeeded
    NO_ACTION = "no_action"  # conditions not met, nothing to do
    REJECTED = "rejected"    # policy rejection (impact, thresholds)
    FAILED = "failed"        # submission or data failure
    SKIPPED = "skipped"      # disabled, cooling down, or already running


class BaseStrategy(ABC):
    """
    Abstract base class for automated strategies.

    Subclasses implement validate(), describe() and evaluate(now).
    """

    kind = "base"

    def __init__(
        self,
        config: StrategyConfig,
        services,
        clock: Callable[[], datetime] = utc_now,
        history_size: int = 500,
    ):
        """
        Args:
            config: Strategy config (a kind-specific StrategyConfig subclass)
            services: TradingServices gateway (quotes, positions, swaps)
            clock: UTC datetime provider (injectable for tests)
            history_size: Executions kept in memory
        """
        if not isinstance(config.dry_run, bool):
            raise ConfigurationInvalid(f"Strategy {config.id}: dry_run must be a boolean, got {config.dry_run!r}")
        self.config = config
        self.services = services
        self._clock = clock
        self._run_lock = threading.Lock()
        self._executions: Deque[TradeExecution] = deque(maxlen=history_size)
        self._successful_executions = 0
        self._peak_profit = max(0.0, config.total_profit)
        self.last_outcome: Optional[StrategyOutcome] = None

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def dry_run(self) -> bool:
        return self.config.dry_run

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def set_enabled(self, enabled: bool) -> None:
        self.config.enabled = bool(enabled)

    def set_dry_run(self, dry_run: bool) -> None:
        if not isinstance(dry_run, bool):
            raise ConfigurationInvalid(f"Strategy {self.id}: dry_run must be a boolean, got {dry_run!r}")
        if not dry_run:
            logger.warning(f"⚠️ [{self.name}] switched to LIVE mode")
        self.config.dry_run = dry_run

    @abstractmethod
    def validate(self) -> bool:
        """Structural sanity check of the config."""
        pass

    @abstractmethod
    def describe(self) -> str:
        pass

    @abstractmethod
    def evaluate(self, now: datetime) -> StrategyOutcome:
        """
        Decide and (maybe) act. Called by run() with the instance lock held.

        Exceptions escaping here are logged by run() and reported as FAILED.
        """
        pass

    def should_run(self, now: Optional[datetime] = None) -> bool:
        """Enabled and outside the cooldown window. No side effects."""
        if not self.config.enabled:
            return False
        if self.config.last_execution is not None:
            now = now or self._clock()
            if now - self.config.last_execution < MIN_EXECUTION_INTERVAL:
                return False
        return True

    def run(self, now: Optional[datetime] = None) -> StrategyOutcome:
        """Run one evaluation under the single-owner lock."""
        if not self._run_lock.acquire(blocking=False):
            logger.warning(f"[{self.name}] previous run still in flight, skipping")
            return StrategyOutcome.SKIPPED
        try:
            now = now or self._clock()
            if not self.should_run(now):
                outcome = StrategyOutcome.SKIPPED
            else:
                try:
                    outcome = self.evaluate(now)
                except ConfigurationInvalid:
                    raise
                except Exception as e:
                    logger.error(f"[{self.name}] Error during evaluation: {e}", exc_info=True)
                    outcome = StrategyOutcome.FAILED
            self.last_outcome = outcome
            return outcome
        finally:
            self._run_lock.release()

    def execute(self, now: Optional[datetime] = None) -> bool:
        """True when this run submitted a successful action."""
        return self.run(now) is StrategyOutcome.EXECUTED

    def _submit(
        self,
        now: datetime,
        action: TradeAction,
        input_asset: str,
        output_asset: str,
        input_amount: float,
        record_asset: str,
        record_symbol: str,
        record_amount: Optional[float],
        price: Optional[float],
        slippage_bps: int,
        realized_profit: float = 0.0,
    ) -> TradeExecution:
        """Submit one swap in the strategy's mode and record the attempt.

        A record_amount of None records the amount the swap returned.
        """
        try:
            result = self.services.execute_swap(input_asset, output_asset, input_amount, slippage_bps, self.config.dry_run)
        except ConfigurationInvalid:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] swap submission failed: {e}")
            result = SwapResult(success=False, error=str(e) or type(e).__name__, dry_run=self.config.dry_run)

        execution = TradeExecution(
            id=new_id(self.config.id),
            timestamp=now,
            action=action,
            asset=record_asset,
            symbol=record_symbol,
            amount=record_amount if record_amount is not None else result.output_amount,
            price=price,
            success=result.success,
            dry_run=self.config.dry_run,
            error=result.error,
            output_asset=output_asset,
            amount_out=result.output_amount,
            price_impact_pct=result.price_impact_pct,
            signature=result.signature,
            strategy_id=self.config.id,
            slippage_bps=slippage_bps,
        )
        self.record_execution(execution, realized_profit if result.success else 0.0)
        return execution

    def record_execution(self, execution: TradeExecution, realized_profit: float = 0.0) -> None:
        """Append an attempt and advance counters, success or not."""
        self._executions.append(execution)
        self.config.execution_count += 1
        if self.config.last_execution is None or execution.timestamp > self.config.last_execution:
            self.config.last_execution = execution.timestamp

        if execution.success:
            self._successful_executions += 1
            if realized_profit:
                self.config.total_profit += realized_profit
                self._peak_profit = max(self._peak_profit, self.config.total_profit)
                drawdown = self._peak_profit - self.config.total_profit
                self.config.max_drawdown = max(self.config.max_drawdown, drawdown)

        logger.info(
            f"[{self.name}] recorded {execution.action.value} {execution.amount:.6f} {execution.symbol} "
            f"({'ok' if execution.success else 'failed'}{', dry run' if execution.dry_run else ''})"
        )

    def get_executions(self) -> List[TradeExecution]:
        return list(self._executions)

    def metrics(self) -> Dict[str, Any]:
        total = self.config.execution_count
        return {
            "total_executions": total,
            "successful_executions": self._successful_executions,
            "win_rate": self._successful_executions / total if total else 0.0,
            "total_profit": self.config.total_profit,
            "max_drawdown": self.config.max_drawdown,
        }

    def status(self) -> str:
        if not self.config.enabled:
            return "stopped"
        return "running" if self.is_running else "idle"

    def snapshot(self) -> Dict[str, Any]:
        """Serializable view of config + metrics for the persistence store."""
        return {
            "kind": self.kind,
            "description": self.describe(),
            "status": self.status(),
            "config": self.config.to_dict(),
            "metrics": self.metrics(),
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id!r}, enabled={self.enabled}, dry_run={self.dry_run})"
