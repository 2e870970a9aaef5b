"""
solharvest Runner: Trading Daemon

Fixed-interval scheduler that drives strategies and profit taking.

State machine: stopped -> starting -> running -> stopping -> stopped

Each cycle:
1. Re-read trading settings (external edits take effect next cycle)
2. Roll the daily trade counter if the UTC date changed
3. Refresh positions once; strategies and the scanner share that snapshot
4. Run enabled strategies when registry auto-run is on
5. Rescan and hand the opportunity set to the auto trader when auto
   trading is on

Cycles never overlap: a tick that fires while a cycle is in flight is
skipped and counted. Cycle errors are logged and counted; once the count
exceeds max_errors the daemon stops itself. stop() lets the in-flight
cycle finish before returning.
"""

import logging
import signal
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from core.exceptions import ConfigurationInvalid, ServiceUnavailable
from core.models import Position, TradeExecution, TradingOpportunity
from infra.metrics import CycleStats

logger = logging.getLogger(__name__)

MAX_CYCLE_INTERVAL_SECONDS = 30.0
MAX_CYCLE_ERRORS = 10
STATUS_LOG_EVERY = 10


class DaemonState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class DaemonStatus:
    running: bool
    state: str
    uptime_seconds: float
    cycle_count: int
    error_count: int
    skipped_ticks: int
    next_cycle_in: Optional[float]
    interval_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "state": self.state,
            "uptime_seconds": round(self.uptime_seconds, 1),
            "cycle_count": self.cycle_count,
            "error_count": self.error_count,
            "skipped_ticks": self.skipped_ticks,
            "next_cycle_in": self.next_cycle_in,
            "interval_seconds": self.interval_seconds,
        }


class TradingDaemon:
    """
    Top-level scheduler owning the cycle thread.

    Usage:
        daemon = TradingDaemon(config_store, scanner, trader, registry, services)
        daemon.install_signal_handlers()
        daemon.start()
        daemon.wait()
    """

    def __init__(
        self,
        config_store,
        scanner,
        trader,
        registry,
        services,
        metrics: Any = None,
        store: Any = None,
        auto_run_strategies: bool = True,
        max_interval: float = MAX_CYCLE_INTERVAL_SECONDS,
        max_errors: int = MAX_CYCLE_ERRORS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            config_store: ConfigStore for trading.yaml
            scanner: OpportunityScanner
            trader: AutoTrader
            registry: StrategyRegistry
            services: TradingServices (per-cycle position refresh, live signing check)
            metrics: Optional MetricsRecorder
            store: Optional StateStore
            auto_run_strategies: Enable registry auto-run on start
            max_interval: Upper bound on the cycle interval in seconds
            max_errors: Cycle error count above which the daemon stops itself
            clock: Monotonic clock (injectable for tests)
        """
        self.config_store = config_store
        self.scanner = scanner
        self.trader = trader
        self.registry = registry
        self.services = services
        self.metrics = metrics
        self.store = store
        self.auto_run_strategies = auto_run_strategies
        self.max_interval = max_interval
        self.max_errors = max_errors
        self._clock = clock

        self._state = DaemonState.STOPPED
        self._state_lock = threading.Lock()
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._worker: Optional[threading.Thread] = None

        self.interval_seconds = max_interval
        self.cycle_count = 0
        self.error_count = 0
        self.skipped_ticks = 0
        self._started_at: Optional[float] = None
        self._last_cycle_at: Optional[float] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def state(self) -> DaemonState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is DaemonState.RUNNING

    def start(self) -> None:
        """
        Validate configuration, arm the components and begin cycling.

        Raises:
            ConfigurationInvalid: if trading.yaml is invalid, or live mode is
                configured without a wallet able to sign
        """
        with self._state_lock:
            if self._state is not DaemonState.STOPPED:
                logger.info(f"Daemon already {self._state.value}, ignoring start()")
                return
            self._state = DaemonState.STARTING

        try:
            settings = self._check_config()
        except Exception:
            self._state = DaemonState.STOPPED
            raise

        logger.info("=" * 80)
        logger.info("🚀 STARTING SOLHARVEST DAEMON")
        logger.info("=" * 80)
        logger.info(f"Mode: {'DRY RUN' if settings.execution.dry_run else 'LIVE'}")

        self.interval_seconds = min(float(settings.monitoring.check_interval_seconds), self.max_interval)
        if settings.profit_taking.enabled:
            self.trader.enable_auto_trading()
        if self.auto_run_strategies:
            self.registry.start_automation()

        self.cycle_count = 0
        self.error_count = 0
        self.skipped_ticks = 0
        self._started_at = self._clock()
        self._last_cycle_at = None
        self._stop_event.clear()

        self._worker = threading.Thread(target=self._run_loop, name="solharvest-daemon", daemon=True)
        self._state = DaemonState.RUNNING
        self._worker.start()
        logger.info(f"Daemon running, cycle interval {self.interval_seconds:.0f}s")

    def run_once(self) -> bool:
        """
        Validate, arm the components, run exactly one cycle in the calling
        thread and disarm again. Used by `--once`.

        Raises:
            ConfigurationInvalid: as for start()
        """
        if self._state is not DaemonState.STOPPED:
            raise RuntimeError(f"Daemon is {self._state.value}, run_once() needs it stopped")

        settings = self._check_config()
        if settings.profit_taking.enabled:
            self.trader.enable_auto_trading()
        if self.auto_run_strategies:
            self.registry.start_automation()
        try:
            return self.run_cycle()
        finally:
            self.registry.stop_automation()
            self.trader.disable_auto_trading()

    def _check_config(self):
        errors = self.config_store.validate()
        if errors:
            raise ConfigurationInvalid("trading.yaml is invalid", errors)

        settings = self.config_store.get_settings()
        if not settings.execution.dry_run and not self.services.can_trade_live():
            raise ConfigurationInvalid("Live trading configured but the wallet cannot sign")
        return settings

    def stop(self) -> None:
        """
        Stop scheduling cycles and disarm the components. Idempotent.

        An in-flight cycle is allowed to finish (joined unless stop() is
        called from the cycle thread itself).
        """
        with self._state_lock:
            if self._state in (DaemonState.STOPPED, DaemonState.STOPPING):
                logger.debug(f"Daemon already {self._state.value}, ignoring stop()")
                return
            self._state = DaemonState.STOPPING

        logger.info("🛑 Stopping daemon...")
        self._stop_event.set()
        self.registry.stop_automation()
        self.trader.disable_auto_trading()

        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join()
        self._worker = None

        self._log_session_summary()
        self._state = DaemonState.STOPPED
        logger.info("✅ Daemon stopped")

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the daemon is stopped (or timeout)."""
        self._stop_event.wait(timeout)
        worker = self._worker
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout)

    def install_signal_handlers(self) -> None:
        """Route SIGINT/SIGTERM to stop(). Must be called from the main thread."""
        signal.signal(signal.SIGINT, self._handle_stop)
        signal.signal(signal.SIGTERM, self._handle_stop)

    def _handle_stop(self, signum, _frame) -> None:
        logger.warning("=" * 80)
        logger.warning(f"SHUTDOWN SIGNAL RECEIVED ({signal.Signals(signum).name}) - draining current cycle")
        logger.warning("=" * 80)
        self.stop()

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_cycle()
            if self._stop_event.wait(self.interval_seconds):
                break

    def run_cycle(self) -> bool:
        """
        Run one cycle unless another is in flight.

        Returns:
            True if the cycle ran to completion without error
        """
        if not self._cycle_lock.acquire(blocking=False):
            self.skipped_ticks += 1
            logger.warning("Previous cycle still running, skipping this tick")
            if self.metrics is not None:
                self.metrics.record_cycle(CycleStats("skipped", 0, 0, 0, 0.0))
            return False

        started = self._clock()
        strategies_executed = 0
        opportunities: List[TradingOpportunity] = []
        executions: List[TradeExecution] = []
        try:
            settings = self.config_store.get_settings()
            if self.trader.daily_limit.reset_if_new_day():
                logger.info("📅 New trading day, daily trade counter reset")

            positions: List[Position] = []
            if self.registry.auto_run or self.trader.is_enabled:
                try:
                    positions = self.services.refresh_positions()
                except ServiceUnavailable:
                    self.scanner.clear()
                    raise

            if self.registry.auto_run:
                strategies_executed = self.registry.execute_all()

            if self.trader.is_enabled:
                opportunities = self.scanner.refresh(positions, settings)
                executions = self.trader.process_opportunities(opportunities, settings)

            self.cycle_count += 1
            status = "ok"
        except ConfigurationInvalid as e:
            self.error_count += 1
            status = "error"
            logger.error(f"Cycle aborted, configuration invalid: {e}")
        except Exception as e:
            self.error_count += 1
            status = "error"
            logger.exception(f"Cycle error ({self.error_count}/{self.max_errors}): {e}")
        finally:
            self._last_cycle_at = self._clock()
            self._cycle_lock.release()

        duration = self._clock() - started
        if self.metrics is not None:
            self.metrics.record_cycle(
                CycleStats(status, strategies_executed, len(opportunities), len(executions), duration)
            )
            self.metrics.record_daily_trades(self.trader.daily_limit.count)

        if status == "ok" and self.cycle_count % STATUS_LOG_EVERY == 0:
            self._log_status()

        if self.error_count > self.max_errors:
            logger.error(f"🚨 Too many cycle errors ({self.error_count}), stopping daemon")
            self.stop()
        return status == "ok"

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> DaemonStatus:
        now = self._clock()
        uptime = now - self._started_at if self._started_at is not None and self.is_running else 0.0
        next_cycle_in = None
        if self.is_running:
            if self._last_cycle_at is None:
                next_cycle_in = 0.0
            else:
                next_cycle_in = max(0.0, self.interval_seconds - (now - self._last_cycle_at))
        return DaemonStatus(
            running=self.is_running,
            state=self._state.value,
            uptime_seconds=uptime,
            cycle_count=self.cycle_count,
            error_count=self.error_count,
            skipped_ticks=self.skipped_ticks,
            next_cycle_in=next_cycle_in,
            interval_seconds=self.interval_seconds,
        )

    def _log_status(self) -> None:
        status = self.status()
        trader_stats = self.trader.get_stats()
        logger.info(
            f"📊 Status: {status.cycle_count} cycles, {status.error_count} errors, "
            f"{status.skipped_ticks} skipped, uptime {status.uptime_seconds / 60:.1f}min | "
            f"trades {trader_stats['trades_executed']} "
            f"({trader_stats['daily_trade_count']}/{trader_stats['daily_trade_limit']} today) | "
            f"{len(self.scanner.current_opportunities())} open opportunities"
        )

    def _log_session_summary(self) -> None:
        uptime = self._clock() - self._started_at if self._started_at is not None else 0.0
        trader_stats = self.trader.get_stats()
        summary = self.registry.get_summary()
        logger.info("=" * 80)
        logger.info("SESSION SUMMARY")
        logger.info(f"  Uptime: {uptime / 60:.1f} minutes")
        logger.info(f"  Cycles: {self.cycle_count} ({self.error_count} errors, {self.skipped_ticks} skipped ticks)")
        logger.info(
            f"  Trades: {trader_stats['trades_executed']} "
            f"({trader_stats['successful_trades']} ok, {trader_stats['failed_trades']} failed)"
        )
        logger.info(
            f"  Strategies: {summary['enabled_strategies']}/{summary['total_strategies']} enabled, "
            f"{summary['total_executions']} executions"
        )
        logger.info("=" * 80)

    # ------------------------------------------------------------------
    # Surface for callers (CLI / API wrappers)
    # ------------------------------------------------------------------

    def enable_strategy(self, strategy_id: str) -> bool:
        return self.registry.enable_strategy(strategy_id)

    def disable_strategy(self, strategy_id: str) -> bool:
        return self.registry.disable_strategy(strategy_id)

    def set_dry_run(self, strategy_id: str, dry_run: bool) -> bool:
        return self.registry.set_dry_run(strategy_id, dry_run)

    def execute_strategy(self, strategy_id: str) -> bool:
        return self.registry.execute_one(strategy_id)

    def get_current_opportunities(self) -> List[TradingOpportunity]:
        return self.scanner.current_opportunities()

    def get_recent_executions(self, n: int = 10) -> List[TradeExecution]:
        return self.trader.get_recent_executions(n)
