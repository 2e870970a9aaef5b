"""
Tests for TradingDaemon

Covers the start/stop state machine, config checks at start, the cycle
pipeline, overlap skipping, error self-stop and the caller surface.
"""
import os

import pytest

from core.exceptions import ConfigurationInvalid
from core.models import SOL_MINT, USDC_MINT
from infra.metrics import MetricsRecorder
from runner.daemon import DaemonState
from strategy.base_strategy import StrategyOutcome
from strategy.rebalance_strategy import AllocationTarget, RebalanceConfig
from strategy.registry import StrategyRegistry
from tests.helpers import FakeUtcClock, make_position, wait_for


class TestStart:
    """start() checks and arming"""

    def test_start_runs_first_cycle_immediately(self, make_daemon, mock_components):
        scanner, trader, registry = mock_components
        daemon = make_daemon(max_interval=3600)
        daemon.start()

        assert daemon.state is DaemonState.RUNNING
        assert wait_for(lambda: daemon.cycle_count == 1)
        trader.enable_auto_trading.assert_called_once()
        registry.start_automation.assert_called_once()
        registry.execute_all.assert_called_once()
        scanner.refresh.assert_called_once()

    def test_interval_bounded_by_max(self, make_daemon):
        daemon = make_daemon(max_interval=30)
        daemon.start()
        assert daemon.interval_seconds == 30

        other = make_daemon(max_interval=3600)
        other.start()
        assert other.interval_seconds == 60

    def test_start_is_idempotent(self, make_daemon, mock_components):
        _, _, registry = mock_components
        daemon = make_daemon(max_interval=3600)
        daemon.start()
        worker = daemon._worker
        daemon.start()

        assert daemon._worker is worker
        registry.start_automation.assert_called_once()

    def test_start_refuses_invalid_config(self, make_daemon, write_trading_config):
        daemon = make_daemon()
        write_trading_config({"monitoring": {"check_interval_seconds": 5}})

        with pytest.raises(ConfigurationInvalid) as exc_info:
            daemon.start()
        assert any("check_interval_seconds" in error for error in exc_info.value.errors)
        assert daemon.state is DaemonState.STOPPED

    def test_start_refuses_live_without_signer(self, make_daemon, config_store, mock_components):
        _, trader, _ = mock_components
        config_store.set_dry_run(False)
        daemon = make_daemon()

        with pytest.raises(ConfigurationInvalid):
            daemon.start()
        assert daemon.state is DaemonState.STOPPED
        trader.enable_auto_trading.assert_not_called()

    def test_strategies_not_armed_when_auto_run_off(self, make_daemon, mock_components):
        _, _, registry = mock_components
        daemon = make_daemon(max_interval=3600, auto_run_strategies=False)
        daemon.start()
        registry.start_automation.assert_not_called()


class TestCycle:
    """run_cycle() pipeline"""

    def test_cycle_order(self, make_daemon, mock_components, portfolio):
        scanner, trader, registry = mock_components
        opportunities = [object()]
        scanner.refresh.return_value = opportunities
        daemon = make_daemon()

        assert daemon.run_cycle() is True
        trader.daily_limit.reset_if_new_day.assert_called_once()
        registry.execute_all.assert_called_once()
        scanner.refresh.assert_called_once()
        assert portfolio.refresh_calls == 1
        assert scanner.refresh.call_args[0][0] == []
        assert trader.process_opportunities.call_args[0][0] is opportunities
        assert daemon.cycle_count == 1

    def test_trading_off_skips_scan(self, make_daemon, mock_components, portfolio):
        scanner, trader, registry = mock_components
        trader.is_enabled = False
        registry.auto_run = False
        daemon = make_daemon()

        assert daemon.run_cycle() is True
        scanner.refresh.assert_not_called()
        registry.execute_all.assert_not_called()
        assert portfolio.refresh_calls == 0

    def test_positions_refreshed_with_trading_off(self, make_daemon, mock_components, portfolio):
        """Strategies alone still get a fresh snapshot every cycle"""
        scanner, trader, _ = mock_components
        trader.is_enabled = False
        daemon = make_daemon()

        daemon.run_cycle()
        daemon.run_cycle()
        assert portfolio.refresh_calls == 2
        scanner.refresh.assert_not_called()

    def test_refresh_failure_clears_opportunities(self, make_daemon, mock_components, portfolio):
        scanner, trader, registry = mock_components
        portfolio.error = ValueError("snapshot unreadable")
        daemon = make_daemon()

        assert daemon.run_cycle() is False
        assert daemon.error_count == 1
        scanner.clear.assert_called_once()
        registry.execute_all.assert_not_called()
        trader.process_opportunities.assert_not_called()

    def test_overlapping_tick_skipped(self, make_daemon, mock_components):
        _, _, registry = mock_components
        metrics = MetricsRecorder(enabled=True)
        daemon = make_daemon(metrics=metrics)

        daemon._cycle_lock.acquire()
        try:
            assert daemon.run_cycle() is False
        finally:
            daemon._cycle_lock.release()

        assert daemon.skipped_ticks == 1
        assert daemon.cycle_count == 0
        registry.execute_all.assert_not_called()
        assert metrics.sample("solharvest_cycle_total", {"status": "skipped"}) == 1.0

    def test_cycle_error_counted(self, make_daemon, mock_components):
        _, _, registry = mock_components
        registry.execute_all.side_effect = RuntimeError("boom")
        metrics = MetricsRecorder(enabled=True)
        daemon = make_daemon(metrics=metrics)

        assert daemon.run_cycle() is False
        assert daemon.error_count == 1
        assert daemon.cycle_count == 0
        assert metrics.sample("solharvest_cycle_total", {"status": "error"}) == 1.0

    def test_invalid_config_mid_run_is_cycle_error(self, make_daemon, write_trading_config):
        daemon = make_daemon()
        path = write_trading_config({"execution": {"dry_run": "maybe"}})
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))
        assert daemon.run_cycle() is False
        assert daemon.error_count == 1

    def test_self_stop_after_max_errors(self, make_daemon, mock_components):
        _, _, registry = mock_components
        registry.execute_all.side_effect = RuntimeError("boom")
        daemon = make_daemon(max_interval=0.01, max_errors=2)
        daemon.start()

        assert wait_for(lambda: daemon.state is DaemonState.STOPPED)
        assert daemon.error_count == 3
        registry.stop_automation.assert_called_once()


class TestFreshPositions:
    """Strategies act on the positions of the current cycle"""

    def test_rebalance_sees_position_change_between_cycles(self, make_daemon, mock_components, portfolio, swap, services):
        _, trader, _ = mock_components
        trader.is_enabled = False
        clock = FakeUtcClock()
        registry = StrategyRegistry(services, clock=clock)
        rebalance = registry.create_strategy(
            RebalanceConfig(
                id="rebalance_core",
                name="Core rebalance",
                targets=[
                    AllocationTarget(asset=SOL_MINT, symbol="SOL", target_pct=50.0),
                    AllocationTarget(asset=USDC_MINT, symbol="USDC", target_pct=50.0),
                ],
            )
        )
        registry.start_automation()
        portfolio.positions = [
            make_position("SOL", asset=SOL_MINT, quantity=5.0, entry_price=100.0, current_price=150.0, decimals=9),
            make_position("USDC", asset=USDC_MINT, quantity=750.0, entry_price=1.0, current_price=1.0),
        ]
        daemon = make_daemon(registry=registry)

        assert daemon.run_cycle() is True
        assert rebalance.last_outcome is StrategyOutcome.NO_ACTION
        assert swap.swaps == []

        portfolio.positions[0] = make_position(
            "SOL", asset=SOL_MINT, quantity=50.0, entry_price=100.0, current_price=150.0, decimals=9
        )
        clock.advance(hours=25)

        assert daemon.run_cycle() is True
        sol_row = next(a for a in rebalance.current_deviations() if a.asset == SOL_MINT)
        assert sol_row.current_pct > 80
        assert rebalance.last_outcome is StrategyOutcome.EXECUTED
        assert swap.swaps[0]["input_asset"] == SOL_MINT
        assert swap.swaps[0]["output_asset"] == USDC_MINT


class TestRunOnce:
    """Synchronous single cycle"""

    def test_run_once_arms_and_disarms(self, make_daemon, mock_components):
        _, trader, registry = mock_components
        daemon = make_daemon()

        assert daemon.run_once() is True
        registry.start_automation.assert_called_once()
        registry.stop_automation.assert_called_once()
        trader.disable_auto_trading.assert_called_once()
        assert daemon.cycle_count == 1
        assert daemon.state is DaemonState.STOPPED

    def test_run_once_while_running_rejected(self, make_daemon):
        daemon = make_daemon(max_interval=3600)
        daemon.start()
        with pytest.raises(RuntimeError):
            daemon.run_once()


class TestStatus:
    """status() snapshot"""

    def test_stopped_status(self, make_daemon):
        status = make_daemon().status()
        assert status.running is False
        assert status.state == "stopped"
        assert status.uptime_seconds == 0.0
        assert status.next_cycle_in is None

    def test_running_status(self, make_daemon):
        daemon = make_daemon(max_interval=3600)
        daemon.start()
        assert wait_for(lambda: daemon.cycle_count == 1)

        status = daemon.status().to_dict()
        assert status["running"] is True
        assert status["state"] == "running"
        assert status["cycle_count"] == 1
        assert status["interval_seconds"] == 60
        assert 0.0 <= status["next_cycle_in"] <= 60


class TestSurface:
    """Caller-facing delegation"""

    def test_strategy_calls_delegate(self, make_daemon, mock_components):
        _, _, registry = mock_components
        daemon = make_daemon()

        daemon.enable_strategy("dca_sol")
        daemon.disable_strategy("dca_sol")
        daemon.set_dry_run("dca_sol", False)
        daemon.execute_strategy("dca_sol")

        registry.enable_strategy.assert_called_once_with("dca_sol")
        registry.disable_strategy.assert_called_once_with("dca_sol")
        registry.set_dry_run.assert_called_once_with("dca_sol", False)
        registry.execute_one.assert_called_once_with("dca_sol")

    def test_read_calls_delegate(self, make_daemon, mock_components):
        scanner, trader, _ = mock_components
        trader.get_recent_executions.return_value = ["e1"]
        daemon = make_daemon()

        assert daemon.get_current_opportunities() == []
        assert daemon.get_recent_executions(5) == ["e1"]
        trader.get_recent_executions.assert_called_once_with(5)
