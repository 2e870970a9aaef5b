"""
solharvest Runner: Main Loop

Composition root. Builds every component once and wires them together:

    Throttle -> TradingServices(portfolio, swap, wallet)
    TradingServices -> OpportunityScanner / AutoTrader / StrategyRegistry
    all of the above -> TradingDaemon

Nothing below this module reaches for a global; each collaborator is passed
in explicitly.
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from core.auto_trader import AutoTrader
from core.exceptions import ConfigurationInvalid
from core.scanner import OpportunityScanner
from core.services import TradingServices
from core.trading_config import ConfigStore
from infra.jupiter_client import JupiterSwapClient
from infra.metrics import MetricsRecorder
from infra.portfolio_feed import FilePortfolio
from infra.state_store import StateStore
from infra.throttle import Throttle, ThrottlePolicy
from infra.wallet import ReadOnlyWallet
from runner.daemon import TradingDaemon
from strategy.registry import StrategyRegistry
from tools.config_validator import AppConfig, load_app_config, validate_all_configs

logger = logging.getLogger(__name__)


def configure_logging(app_config: AppConfig) -> None:
    log_file = Path(app_config.logging.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, app_config.logging.level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.FileHandler(log_file), logging.StreamHandler()],
    )


def build_throttle(app_config: AppConfig, metrics: Optional[MetricsRecorder] = None) -> Throttle:
    policies = {
        name: ThrottlePolicy(
            min_delay_seconds=cfg.min_delay_seconds,
            max_calls=cfg.max_calls,
            window_seconds=cfg.window_seconds,
            base_cooldown_seconds=cfg.base_cooldown_seconds,
            max_backoff_exponent=cfg.max_backoff_exponent,
        )
        for name, cfg in app_config.throttle.items()
    }
    return Throttle(policies, metrics=metrics)


def build_daemon(config_dir: str = "config") -> TradingDaemon:
    """
    Wire the full component graph from the files in `config_dir`.

    Raises:
        ConfigurationInvalid: if app.yaml or trading.yaml is invalid
    """
    config_path = Path(config_dir)
    app_config = load_app_config(config_path)

    metrics = MetricsRecorder(enabled=app_config.metrics.enabled, port=app_config.metrics.port)
    throttle = build_throttle(app_config, metrics)

    config_store = ConfigStore(str(config_path / "trading.yaml"))
    settings = config_store.get_settings()

    portfolio = FilePortfolio(app_config.portfolio.positions_file)
    wallet = ReadOnlyWallet(app_config.wallet.public_key)
    swap = JupiterSwapClient(
        base_url=app_config.swap_service.base_url,
        timeout=app_config.swap_service.timeout_seconds,
        wallet=wallet,
        decimals_for=portfolio.decimals_for,
    )
    services = TradingServices(
        portfolio,
        swap,
        wallet,
        throttle,
        retry_attempts=settings.execution.retry_attempts,
    )

    store = StateStore(app_config.state.file)
    scanner = OpportunityScanner(metrics=metrics)
    trader = AutoTrader(services, config_store, store=store, metrics=metrics)
    registry = StrategyRegistry(services, config_path / "strategies.yaml", store=store, metrics=metrics)

    return TradingDaemon(
        config_store,
        scanner,
        trader,
        registry,
        services,
        metrics=metrics,
        store=store,
        auto_run_strategies=app_config.strategies.auto_run,
        max_interval=app_config.daemon.max_cycle_interval_seconds,
        max_errors=app_config.daemon.max_cycle_errors,
    )


def main(argv=None) -> int:
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description="solharvest trading daemon")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    parser.add_argument("--config-dir", default="config", help="Config directory")
    args = parser.parse_args(argv)

    try:
        app_config = load_app_config(Path(args.config_dir))
    except ConfigurationInvalid as e:
        logging.basicConfig(level=logging.INFO)
        for error in e.errors:
            logger.error(f"Config error: {error}")
        return 1
    configure_logging(app_config)

    errors = validate_all_configs(args.config_dir)
    if errors:
        logger.error("=" * 80)
        logger.error("CONFIGURATION INVALID - refusing to start")
        logger.error("=" * 80)
        for error in errors:
            logger.error(f"  • {error}")
        return 1

    daemon = build_daemon(args.config_dir)

    try:
        if args.once:
            return 0 if daemon.run_once() else 1

        daemon.metrics.start()
        daemon.install_signal_handlers()
        daemon.start()
    except ConfigurationInvalid as e:
        for error in e.errors:
            logger.error(f"Startup refused: {error}")
        return 1

    while daemon.is_running:
        daemon.wait(timeout=1.0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
