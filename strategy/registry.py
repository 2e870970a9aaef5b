"""
Strategy Registry for Automated Strategies

Holds every strategy instance by id and drives their execution.

Architecture:
- Load strategy entries from config/strategies.yaml (tagged by `kind`)
- Instantiate the strategy class registered for each config type
- Reject invalid configs at creation (ConfigurationInvalid) while keeping
  every other valid strategy
- enable/disable/dry-run toggles, execute_one(id) and execute_all()
- auto_run flag consulted by the daemon each cycle

Strategies default to disabled and to dry-run.
"""

import logging
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type

import yaml
from pydantic import ValidationError

from core.exceptions import ConfigurationInvalid
from core.interfaces import PersistenceStore
from core.models import utc_now
from core.trading_config import format_validation_errors
from strategy.base_strategy import BaseStrategy, StrategyConfig, StrategyOutcome
from strategy.config_schema import STRATEGY_ENTRY
from strategy.dca_strategy import DCAConfig, DCAStrategy
from strategy.grid_strategy import GridConfig, GridStrategy
from strategy.rebalance_strategy import RebalanceConfig, RebalanceStrategy

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """
    Central registry for all automated strategies.

    Usage:
        registry = StrategyRegistry(services, Path("config/strategies.yaml"))
        registry.start_automation()
        successes = registry.execute_all()
    """

    # Map strategy kind to class
    STRATEGY_CLASSES: Dict[str, Type[BaseStrategy]] = {
        "dca": DCAStrategy,
        "grid": GridStrategy,
        "rebalance": RebalanceStrategy,
    }

    # Map config dataclass to kind
    CONFIG_KINDS: Dict[Type[StrategyConfig], str] = {
        DCAConfig: "dca",
        GridConfig: "grid",
        RebalanceConfig: "rebalance",
    }

    def __init__(
        self,
        services,
        config_path: Optional[Path] = None,
        store: Optional[PersistenceStore] = None,
        metrics: Any = None,
        clock: Callable = utc_now,
    ):
        """
        Initialize registry and load strategy configurations.

        Args:
            services: TradingServices gateway shared by all strategies
            config_path: Path to strategies.yaml (None = start empty)
            store: Optional persistence store for strategy snapshots
            metrics: Optional MetricsRecorder
            clock: UTC datetime provider handed to each strategy
        """
        self.services = services
        self.config_path = Path(config_path) if config_path else None
        self.store = store
        self.metrics = metrics
        self._clock = clock
        self._lock = threading.Lock()
        self.strategies: Dict[str, BaseStrategy] = {}
        self.auto_run = False
        self.load_errors: List[str] = []
        self._load_strategies()

    def _load_strategies(self) -> None:
        """
        Instantiate each entry in strategies.yaml.

        A bad entry is logged and skipped; the others still load.
        """
        self.load_errors = []
        if self.config_path is None:
            return
        if not self.config_path.exists():
            logger.warning(f"Strategy config not found at {self.config_path}, starting with no strategies")
            return

        with open(self.config_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        entries = config.get("strategies") or []
        loaded_count = 0
        for index, raw in enumerate(entries):
            label = raw.get("id", f"#{index}") if isinstance(raw, dict) else f"#{index}"
            try:
                entry = STRATEGY_ENTRY.validate_python(raw)
                strategy = self.create_strategy(entry.to_config())
            except ValidationError as e:
                errors = format_validation_errors(e, f"strategies.yaml[{label}]")
                self.load_errors.extend(errors)
                logger.error(f"Failed to load strategy '{label}': {'; '.join(errors)}")
                continue
            except ConfigurationInvalid as e:
                self.load_errors.extend(e.errors)
                logger.error(f"Failed to load strategy '{label}': {e}")
                continue
            loaded_count += 1
            if strategy.enabled:
                logger.info(f"✅ Loaded and ENABLED strategy: {strategy.id} ({strategy.kind})")
            else:
                logger.info(f"⚪ Loaded but DISABLED strategy: {strategy.id} ({strategy.kind})")

        logger.info(f"Strategy registry initialized: {loaded_count} strategies loaded, {len(self.get_enabled_strategies())} enabled")

    def create_strategy(self, config: StrategyConfig) -> BaseStrategy:
        """
        Instantiate and register a strategy.

        Raises:
            ConfigurationInvalid: unknown config type, duplicate id, or
                validate() returned False
        """
        kind = self.CONFIG_KINDS.get(type(config))
        if kind is None:
            raise ConfigurationInvalid(f"Unknown strategy config type: {type(config).__name__}")

        strategy = self.STRATEGY_CLASSES[kind](config, self.services, clock=self._clock)
        if not strategy.validate():
            raise ConfigurationInvalid(f"Invalid {kind} strategy configuration: {config.id}")

        with self._lock:
            if config.id in self.strategies:
                raise ConfigurationInvalid(f"Strategy id already registered: {config.id}")
            self.strategies[config.id] = strategy

        logger.info(f"Created {kind} strategy {config.id}: {strategy.describe()}")
        return strategy

    def get_strategy(self, strategy_id: str) -> Optional[BaseStrategy]:
        with self._lock:
            return self.strategies.get(strategy_id)

    def get_all_strategies(self) -> List[BaseStrategy]:
        with self._lock:
            return list(self.strategies.values())

    def get_enabled_strategies(self) -> List[BaseStrategy]:
        return [s for s in self.get_all_strategies() if s.enabled]

    def enable_strategy(self, strategy_id: str) -> bool:
        strategy = self.get_strategy(strategy_id)
        if strategy is None:
            return False
        strategy.set_enabled(True)
        logger.info(f"✅ Strategy enabled: {strategy.name}")
        return True

    def disable_strategy(self, strategy_id: str) -> bool:
        strategy = self.get_strategy(strategy_id)
        if strategy is None:
            return False
        strategy.set_enabled(False)
        logger.info(f"⏸️ Strategy disabled: {strategy.name}")
        return True

    def set_dry_run(self, strategy_id: str, dry_run: bool) -> bool:
        """
        Raises:
            ConfigurationInvalid: if dry_run is not a boolean
        """
        strategy = self.get_strategy(strategy_id)
        if strategy is None:
            return False
        strategy.set_dry_run(dry_run)
        logger.info(f"Strategy {strategy.name} mode: {'DRY RUN' if dry_run else 'LIVE'}")
        return True

    def remove_strategy(self, strategy_id: str) -> bool:
        with self._lock:
            strategy = self.strategies.pop(strategy_id, None)
        if strategy is None:
            return False
        strategy.set_enabled(False)
        logger.info(f"🗑️ Strategy removed: {strategy.name}")
        return True

    def execute_one(self, strategy_id: str) -> bool:
        """Run one strategy now. True if it executed an action successfully."""
        strategy = self.get_strategy(strategy_id)
        if strategy is None:
            logger.warning(f"Strategy not found: {strategy_id}")
            return False
        outcome = self._run(strategy)
        self._persist(strategy)
        return outcome is StrategyOutcome.EXECUTED

    def execute_all(self) -> int:
        """
        Run every enabled strategy sequentially, continuing past failures.

        Returns:
            Number of strategies that executed an action successfully
        """
        enabled = self.get_enabled_strategies()
        if not enabled:
            logger.debug("No enabled strategies")
            return 0

        logger.info(f"🔄 Executing {len(enabled)} enabled strategies")
        successes = 0
        for strategy in enabled:
            if self._run(strategy) is StrategyOutcome.EXECUTED:
                successes += 1
            self._persist(strategy)

        logger.info(f"Strategy round complete: {successes}/{len(enabled)} executed")
        return successes

    def _run(self, strategy: BaseStrategy) -> StrategyOutcome:
        try:
            outcome = strategy.run()
        except ConfigurationInvalid as e:
            logger.error(f"[{strategy.name}] configuration invalid, not executed: {e}")
            outcome = StrategyOutcome.FAILED
        if self.metrics is not None:
            self.metrics.record_strategy_outcome(strategy.kind, outcome.value)
        return outcome

    def _persist(self, strategy: BaseStrategy) -> None:
        if self.store is None:
            return
        try:
            self.store.save_strategy_snapshot(strategy.id, strategy.snapshot())
        except OSError as e:
            logger.warning(f"Failed to persist snapshot for {strategy.id}: {e}")

    def start_automation(self) -> None:
        if not self.auto_run:
            self.auto_run = True
            logger.info("🤖 Strategy automation enabled")

    def stop_automation(self) -> None:
        if self.auto_run:
            self.auto_run = False
            logger.info("🛑 Strategy automation disabled")

    def list_strategies(self) -> List[Dict[str, Any]]:
        """Info rows for every registered strategy."""
        rows = []
        for strategy in self.get_all_strategies():
            cfg = strategy.config
            rows.append({
                "id": strategy.id,
                "name": strategy.name,
                "kind": strategy.kind,
                "description": strategy.describe(),
                "enabled": strategy.enabled,
                "dry_run": strategy.dry_run,
                "status": strategy.status(),
                "execution_count": cfg.execution_count,
                "last_execution": cfg.last_execution.isoformat() if cfg.last_execution else None,
                "total_profit": cfg.total_profit,
            })
        return rows

    def get_summary(self) -> Dict[str, Any]:
        strategies = self.get_all_strategies()
        enabled = [s for s in strategies if s.enabled]
        return {
            "total_strategies": len(strategies),
            "enabled_strategies": len(enabled),
            "disabled_strategies": len(strategies) - len(enabled),
            "total_executions": sum(s.config.execution_count for s in strategies),
            "total_profit": sum(s.config.total_profit for s in strategies),
            "auto_run": self.auto_run,
        }

    def export_strategies(self) -> List[Dict[str, Any]]:
        return [s.snapshot() for s in self.get_all_strategies()]

    def reload(self) -> None:
        """Reload strategy configurations from disk."""
        logger.info("Reloading strategy registry")
        with self._lock:
            self.strategies.clear()
        self._load_strategies()

    def __repr__(self) -> str:
        total = len(self.get_all_strategies())
        return f"StrategyRegistry({total} strategies, {len(self.get_enabled_strategies())} enabled)"
