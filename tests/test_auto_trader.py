"""
Tests for AutoTrader

Validates the execution rails: enable switch, daily cap, price-impact
rejection, pacing, failure recording and persistence.
"""
from unittest.mock import MagicMock

import pytest

from core.auto_trader import AutoTrader
from core.models import SOL_MINT
from core.scanner import OpportunityScanner
from core.trade_limits import DailyTradeLimit
from core.trading_config import default_profit_targets
from tests.helpers import MemoryStore, StubSwap, make_position, make_services


def opportunities_for(*positions):
    return OpportunityScanner().scan(positions, default_profit_targets(), minimum_profit_pct=5.0)


@pytest.fixture
def bonk():
    return make_position("BONK", quantity=1000.0, entry_price=1.0, current_price=1.6)


@pytest.fixture
def wif():
    return make_position("WIF", quantity=500.0, entry_price=2.0, current_price=5.0)


@pytest.fixture
def popcat():
    return make_position("POPCAT", quantity=200.0, entry_price=1.0, current_price=1.3)


@pytest.fixture
def swap(bonk, wif, popcat):
    return StubSwap(prices={bonk.asset: 1.6, wif.asset: 5.0, popcat.asset: 1.3})


@pytest.fixture
def trader_factory(config_store, swap):
    def _make(**kwargs):
        services = kwargs.pop("services", None) or make_services(swap=swap)
        trader = AutoTrader(services, config_store, sleep=kwargs.pop("sleep", MagicMock()), **kwargs)
        trader.enable_auto_trading()
        return trader

    return _make


class TestEnableSwitch:
    """Nothing trades unless enabled"""

    def test_disabled_trader_does_nothing(self, trader_factory, swap, bonk):
        trader = trader_factory()
        trader.disable_auto_trading()
        assert trader.process_opportunities(opportunities_for(bonk)) == []
        assert swap.swaps == []

    def test_enable_is_idempotent(self, trader_factory):
        trader = trader_factory()
        trader.enable_auto_trading()
        assert trader.is_enabled


class TestExecution:
    """Happy path and failure recording"""

    def test_dry_run_sell(self, trader_factory, swap, bonk):
        """A qualifying position is partially sold into the settlement asset"""
        trader = trader_factory()
        executions = trader.process_opportunities(opportunities_for(bonk))

        assert len(executions) == 1
        execution = executions[0]
        assert execution.success
        assert execution.dry_run
        assert execution.target_id == "target_50"
        assert execution.amount == pytest.approx(400.0)
        assert execution.output_asset == SOL_MINT
        assert swap.swaps[0]["dry_run"] is True
        assert swap.swaps[0]["amount"] == pytest.approx(400.0)
        # 400 BONK * $1.6 / $150
        assert execution.amount_out == pytest.approx(400 * 1.6 / 150)

    def test_priority_order_preserved(self, trader_factory, swap, bonk, wif):
        trader = trader_factory()
        trader.process_opportunities(opportunities_for(bonk, wif))
        assert [s["input_asset"] for s in swap.swaps] == [wif.asset, bonk.asset]

    def test_swap_failure_recorded(self, trader_factory, swap, bonk):
        swap.fail_swaps = True
        trader = trader_factory()
        executions = trader.process_opportunities(opportunities_for(bonk))
        assert len(executions) == 1
        assert not executions[0].success
        assert executions[0].error == "simulation failed"
        assert trader.get_stats()["failed_trades"] == 1

    def test_swap_exception_recorded(self, trader_factory, swap, bonk):
        swap.execute_error = RuntimeError("node unavailable")
        trader = trader_factory()
        executions = trader.process_opportunities(opportunities_for(bonk))
        assert not executions[0].success
        assert "node unavailable" in executions[0].error

    def test_quote_failure_recorded(self, trader_factory, swap, bonk):
        """A failed pre-trade quote is a failed attempt and uses a slot"""
        swap.quote_error = ValueError("no route")
        trader = trader_factory()
        executions = trader.process_opportunities(opportunities_for(bonk))
        assert len(executions) == 1
        assert not executions[0].success
        assert executions[0].error.startswith("Quote failed")
        assert swap.swaps == []
        assert trader.daily_limit.count == 1

    def test_settlement_asset_skipped(self, trader_factory, swap):
        sol = make_position("SOL", asset=SOL_MINT, quantity=2.0, entry_price=100.0, current_price=150.0)
        trader = trader_factory()
        assert trader.process_opportunities(opportunities_for(sol)) == []
        assert trader.daily_limit.count == 0

    def test_live_mode_without_signer_fails_closed(self, config_store, trader_factory, swap, bonk):
        """Live mode never submits without a signing wallet"""
        config_store.set_dry_run(False)
        trader = trader_factory()
        executions = trader.process_opportunities(opportunities_for(bonk))
        assert not executions[0].success
        assert not executions[0].dry_run
        assert swap.swaps == []


class TestPolicyRejection:
    """Price impact ceiling"""

    def test_high_impact_rejected_without_record(self, trader_factory, swap, bonk):
        swap.impact_pct = 12.0
        trader = trader_factory()
        executions = trader.process_opportunities(opportunities_for(bonk))

        assert executions == []
        assert swap.swaps == []
        assert trader.daily_limit.count == 0
        assert trader.get_stats()["rejected_opportunities"] == 1
        assert trader.get_recent_executions() == []


class TestDailyCap:
    """Daily trade cap"""

    def test_cap_stops_processing(self, config_store, trader_factory, swap, bonk, wif, popcat):
        config_store.set_max_daily_trades(2)
        trader = trader_factory()
        executions = trader.process_opportunities(opportunities_for(bonk, wif, popcat))
        assert len(executions) == 2
        assert len(swap.swaps) == 2
        assert trader.daily_limit.is_exhausted()

    def test_exhausted_cap_skips_cycle(self, config_store, trader_factory, swap, bonk):
        config_store.set_max_daily_trades(0)
        trader = trader_factory()
        assert trader.process_opportunities(opportunities_for(bonk)) == []
        assert swap.swaps == []

    def test_set_daily_trade_limit(self, trader_factory):
        trader = trader_factory()
        trader.set_daily_trade_limit(3)
        assert trader.daily_limit.max_trades == 3


class TestPacing:
    """Safety pause between trades"""

    def test_pause_between_attempts(self, config_store, trader_factory, bonk, wif):
        config_store.update_settings({"execution": {"trade_pacing_seconds": 2.0}})
        sleep = MagicMock()
        trader = trader_factory(sleep=sleep)
        trader.process_opportunities(opportunities_for(bonk, wif))
        sleep.assert_called_once_with(2.0)

    def test_no_pause_for_single_trade(self, config_store, trader_factory, bonk):
        config_store.update_settings({"execution": {"trade_pacing_seconds": 2.0}})
        sleep = MagicMock()
        trader = trader_factory(sleep=sleep)
        trader.process_opportunities(opportunities_for(bonk))
        sleep.assert_not_called()


class TestPersistenceAndStats:
    """Store, metrics and history"""

    def test_executions_and_counter_persisted(self, trader_factory, bonk):
        store = MemoryStore()
        trader = trader_factory(store=store)
        trader.process_opportunities(opportunities_for(bonk))
        assert len(store.executions) == 1
        assert store.executions[0]["symbol"] == "BONK"
        assert store.daily_counter["count"] == 1

    def test_counter_restored_from_store(self, trader_factory):
        store = MemoryStore()
        today = DailyTradeLimit(10)
        store.daily_counter = {"date": today.reference_date.isoformat(), "count": 4, "limit": 10}
        trader = trader_factory(store=store)
        assert trader.daily_limit.count == 4

    def test_metrics_recorded(self, trader_factory, bonk):
        metrics = MagicMock()
        trader = trader_factory(metrics=metrics)
        trader.process_opportunities(opportunities_for(bonk))
        metrics.record_trade.assert_called_once_with(True, True)

    def test_recent_executions(self, trader_factory, bonk, wif, popcat):
        trader = trader_factory()
        trader.process_opportunities(opportunities_for(bonk, wif, popcat))
        recent = trader.get_recent_executions(2)
        assert [e.symbol for e in recent] == ["BONK", "POPCAT"]
        assert len(trader.get_execution_history()) == 3
        stats = trader.get_stats()
        assert stats["trades_executed"] == 3
        assert stats["successful_trades"] == 3
        assert stats["daily_trade_count"] == 3
