"""
Pytest configuration and fixtures for solharvest tests.
"""
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml

from core.trading_config import ConfigStore, TradingSettings
from runner.daemon import TradingDaemon
from tests.helpers import FakeClock, MemoryStore, StubPortfolio, StubSwap, StubWallet, make_services


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def portfolio():
    return StubPortfolio()


@pytest.fixture
def swap():
    return StubSwap()


@pytest.fixture
def wallet():
    return StubWallet()


@pytest.fixture
def services(portfolio, swap, wallet):
    return make_services(portfolio, swap, wallet)


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def write_trading_config(tmp_path):
    """Write trading.yaml under tmp_path from TradingSettings defaults plus overrides."""

    def _write(overrides=None) -> Path:
        data = TradingSettings().model_dump()
        for section, values in (overrides or {}).items():
            if isinstance(values, dict):
                data.setdefault(section, {}).update(values)
            else:
                data[section] = values
        path = tmp_path / "trading.yaml"
        path.write_text(yaml.safe_dump(data, sort_keys=False))
        return path

    return _write


@pytest.fixture
def config_store(write_trading_config):
    """ConfigStore with defaults, no pacing delay."""
    path = write_trading_config({"execution": {"trade_pacing_seconds": 0.0}})
    return ConfigStore(str(path))


@pytest.fixture
def mock_components():
    """Mock scanner, trader and registry with the attributes the daemon reads."""
    scanner = MagicMock()
    scanner.refresh.return_value = []
    scanner.current_opportunities.return_value = []

    trader = MagicMock()
    trader.is_enabled = True
    trader.daily_limit.reset_if_new_day.return_value = False
    trader.daily_limit.count = 0
    trader.process_opportunities.return_value = []
    trader.get_stats.return_value = {
        "trades_executed": 0,
        "successful_trades": 0,
        "failed_trades": 0,
        "daily_trade_count": 0,
        "daily_trade_limit": 10,
    }

    registry = MagicMock()
    registry.auto_run = True
    registry.execute_all.return_value = 0
    registry.get_summary.return_value = {
        "total_strategies": 0,
        "enabled_strategies": 0,
        "total_executions": 0,
    }
    return scanner, trader, registry


@pytest.fixture
def make_daemon(config_store, services, mock_components):
    """
    Build a TradingDaemon over mocked components; stops it after the test.

    Pass trader= or registry= to swap a real component in for its mock.
    """
    built = []

    def _make(trader=None, registry=None, **kwargs):
        scanner, mock_trader, mock_registry = mock_components
        trader = mock_trader if trader is None else trader
        registry = mock_registry if registry is None else registry
        daemon = TradingDaemon(config_store, scanner, trader, registry, services, **kwargs)
        built.append(daemon)
        return daemon

    yield _make
    for daemon in built:
        daemon.stop()

