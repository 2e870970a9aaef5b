"""
Tests for RebalanceStrategy

Covers target validation, deviation math, the interval gate with its
emergency override, sell-before-buy ordering and buy funding.
"""
import pytest

from core.models import SOL_MINT, USDC_MINT, TradeAction
from strategy.base_strategy import StrategyOutcome
from strategy.rebalance_strategy import AllocationTarget, RebalanceConfig, RebalanceStrategy
from tests.helpers import BONK_MINT, FakeUtcClock, StubPortfolio, StubSwap, make_position, make_services


def sol(quantity: float):
    return make_position("SOL", asset=SOL_MINT, quantity=quantity, entry_price=100.0, current_price=150.0, decimals=9)


def usdc(quantity: float):
    return make_position("USDC", asset=USDC_MINT, quantity=quantity, entry_price=1.0, current_price=1.0)


def bonk(quantity: float):
    return make_position("BONK", asset=BONK_MINT, quantity=quantity, entry_price=0.001, current_price=0.001, decimals=5)


def targets(*pairs, threshold=5.0):
    symbols = {SOL_MINT: "SOL", USDC_MINT: "USDC", BONK_MINT: "BONK"}
    return [AllocationTarget(asset=asset, symbol=symbols[asset], target_pct=pct, threshold_pct=threshold)
            for asset, pct in pairs]


@pytest.fixture
def clock():
    return FakeUtcClock()


@pytest.fixture
def swap():
    return StubSwap(prices={SOL_MINT: 150.0, USDC_MINT: 1.0, BONK_MINT: 0.001})


@pytest.fixture
def portfolio():
    # SOL 75%, BONK 10%, USDC 15% of $1000
    return StubPortfolio([sol(5.0), bonk(100_000.0), usdc(150.0)])


@pytest.fixture
def make_rebalance(clock, swap, portfolio):
    def _make(**overrides):
        fields = dict(
            id="rebalance_core",
            name="Core rebalance",
            targets=targets((SOL_MINT, 50.0), (BONK_MINT, 20.0), (USDC_MINT, 30.0)),
        )
        fields.update(overrides)
        return RebalanceStrategy(RebalanceConfig(**fields), make_services(portfolio, swap), clock=clock)

    return _make


class TestValidation:
    """Target structure"""

    def test_targets_summing_to_100_validate(self, make_rebalance):
        assert make_rebalance().validate()

    def test_targets_summing_to_95_rejected(self, make_rebalance):
        strategy = make_rebalance(targets=targets((SOL_MINT, 60.0), (USDC_MINT, 35.0)))
        assert not strategy.validate()

    def test_single_target_rejected(self, make_rebalance):
        assert not make_rebalance(targets=targets((SOL_MINT, 100.0))).validate()

    def test_emergency_must_exceed_threshold(self, make_rebalance):
        strategy = make_rebalance(emergency_enabled=True, emergency_deviation_pct=5.0)
        assert not strategy.validate()

    def test_describe(self, make_rebalance):
        assert make_rebalance().describe() == "Rebalance: SOL: 50%, BONK: 20%, USDC: 30%"


class TestComputeActions:
    """Deviation math"""

    def test_actions_per_target(self, make_rebalance, portfolio):
        actions = {a.symbol: a for a in make_rebalance().compute_actions(portfolio.positions)}

        assert actions["SOL"].action == "sell"
        assert actions["SOL"].current_pct == pytest.approx(75.0)
        assert actions["SOL"].trade_value_usd == pytest.approx(250.0)
        assert actions["BONK"].action == "buy"
        assert actions["BONK"].trade_value_usd == pytest.approx(100.0)
        assert actions["USDC"].action == "buy"
        assert actions["USDC"].trade_value_usd == pytest.approx(150.0)

    def test_hold_within_threshold(self, make_rebalance):
        strategy = make_rebalance(targets=targets((SOL_MINT, 60.0), (USDC_MINT, 40.0)))
        actions = strategy.compute_actions([sol(4.0), usdc(400.0)])
        assert [a.action for a in actions] == ["hold", "hold"]
        assert all(a.trade_value_usd == 0.0 for a in actions)

    def test_missing_asset_counts_as_zero(self, make_rebalance):
        actions = make_rebalance().compute_actions([sol(5.0), usdc(250.0)])
        bonk_action = next(a for a in actions if a.symbol == "BONK")
        assert bonk_action.current_pct == 0.0
        assert bonk_action.action == "buy"


class TestEvaluate:
    """Rebalance runs"""

    def test_sells_execute_before_buys(self, make_rebalance, swap, clock):
        strategy = make_rebalance()
        assert strategy.run(clock.now) is StrategyOutcome.EXECUTED

        legs = [(s["input_asset"], s["output_asset"]) for s in swap.swaps]
        assert legs == [
            (SOL_MINT, USDC_MINT),   # sell SOL into stable
            (USDC_MINT, BONK_MINT),  # buy BONK from stable
            (SOL_MINT, USDC_MINT),   # buy stable, funded by SOL
        ]
        actions = [e.action for e in strategy.get_executions()]
        assert actions == [TradeAction.SELL, TradeAction.BUY, TradeAction.BUY]
        assert strategy.last_rebalance == clock.now

    def test_sell_amount_and_profit(self, make_rebalance, swap, clock):
        strategy = make_rebalance()
        strategy.run(clock.now)
        # $250 of SOL at $150 with a $100 cost basis
        assert swap.swaps[0]["amount"] == pytest.approx(250.0 / 150.0)
        assert strategy.config.total_profit == pytest.approx(50.0 * 250.0 / 150.0)

    def test_selling_stable_routes_to_sol(self, make_rebalance, swap, clock, portfolio):
        portfolio.positions = [sol(2.0), usdc(700.0)]
        strategy = make_rebalance(targets=targets((SOL_MINT, 50.0), (USDC_MINT, 50.0)))
        assert strategy.run(clock.now) is StrategyOutcome.EXECUTED
        assert swap.swaps[0]["input_asset"] == USDC_MINT
        assert swap.swaps[0]["output_asset"] == SOL_MINT

    def test_balanced_portfolio_no_action(self, make_rebalance, swap, clock, portfolio):
        portfolio.positions = [sol(4.0), usdc(400.0)]
        strategy = make_rebalance(targets=targets((SOL_MINT, 60.0), (USDC_MINT, 40.0)))
        assert strategy.run(clock.now) is StrategyOutcome.NO_ACTION
        assert swap.swaps == []

    def test_tiny_portfolio_no_action(self, make_rebalance, swap, clock, portfolio):
        portfolio.positions = [usdc(5.0)]
        assert make_rebalance().run(clock.now) is StrategyOutcome.NO_ACTION
        assert swap.swaps == []

    def test_below_global_threshold_rejected(self, make_rebalance, swap, clock, portfolio):
        """Per-target threshold met but max deviation under the rebalance threshold"""
        portfolio.positions = [sol(4.2), usdc(370.0)]
        strategy = make_rebalance(
            targets=targets((SOL_MINT, 60.0), (USDC_MINT, 40.0), threshold=2.0),
            rebalance_threshold_pct=5.0,
        )
        assert strategy.run(clock.now) is StrategyOutcome.REJECTED
        assert swap.swaps == []

    def test_unfunded_buy_skipped(self, make_rebalance, swap, clock, portfolio):
        """No holding is large enough to fund the BONK buy; the sell still runs"""
        portfolio.positions = [sol(1.0), usdc(850.0)]
        strategy = make_rebalance(targets=targets((BONK_MINT, 90.0), (USDC_MINT, 10.0)))
        assert strategy.run(clock.now) is StrategyOutcome.EXECUTED
        assert len(swap.swaps) == 1
        assert swap.swaps[0]["input_asset"] == USDC_MINT

    def test_failed_legs_report_failure(self, make_rebalance, swap, clock):
        swap.fail_swaps = True
        strategy = make_rebalance()
        assert strategy.run(clock.now) is StrategyOutcome.FAILED
        assert strategy.config.execution_count == 3
        assert strategy.metrics()["successful_executions"] == 0


class TestIntervalGate:
    """Minimum interval and emergency override"""

    def test_interval_blocks_second_rebalance(self, make_rebalance, swap, clock):
        strategy = make_rebalance(min_interval_hours=24.0)
        strategy.run(clock.now)
        swaps_after_first = len(swap.swaps)

        assert strategy.run(clock.advance(minutes=5)) is StrategyOutcome.NO_ACTION
        assert len(swap.swaps) == swaps_after_first

    def test_interval_elapsed_allows_rebalance(self, make_rebalance, swap, clock):
        strategy = make_rebalance(min_interval_hours=1.0)
        strategy.run(clock.now)
        assert strategy.run(clock.advance(hours=2)) is StrategyOutcome.EXECUTED

    def test_emergency_bypasses_interval(self, make_rebalance, swap, clock):
        """SOL is 25 points off target, above the 20% emergency level"""
        strategy = make_rebalance(min_interval_hours=24.0, emergency_enabled=True, emergency_deviation_pct=20.0)
        strategy.run(clock.now)
        assert strategy.run(clock.advance(minutes=5)) is StrategyOutcome.EXECUTED


class TestTargetEditing:
    """add / remove / update targets"""

    def test_add_duplicate_raises(self, make_rebalance):
        strategy = make_rebalance()
        with pytest.raises(ValueError):
            strategy.add_target(AllocationTarget(asset=SOL_MINT, symbol="SOL", target_pct=10.0))

    def test_add_then_remove(self, make_rebalance):
        strategy = make_rebalance(targets=targets((SOL_MINT, 60.0), (USDC_MINT, 40.0)))
        strategy.add_target(AllocationTarget(asset=BONK_MINT, symbol="BONK", target_pct=10.0))
        assert not strategy.validate()

        assert strategy.remove_target(BONK_MINT)
        assert strategy.validate()
        assert not strategy.remove_target(BONK_MINT)

    def test_update_target(self, make_rebalance):
        strategy = make_rebalance(targets=targets((SOL_MINT, 60.0), (USDC_MINT, 40.0)))
        assert strategy.update_target(SOL_MINT, target_pct=70.0)
        assert not strategy.validate()
        assert strategy.update_target(USDC_MINT, target_pct=30.0, threshold_pct=3.0)
        assert strategy.validate()
        assert not strategy.update_target(BONK_MINT, target_pct=5.0)
