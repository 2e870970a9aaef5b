"""
Tests for the composition root and the `--once` entry point.

Each test runs from a temp directory holding a copy of config/ so log,
state and position files stay out of the repo. No network calls are made:
positions carry no profit and every strategy ships disabled.
"""
import json
import shutil
from pathlib import Path

import pytest

from runner.daemon import DaemonState, TradingDaemon
from runner.main_loop import build_daemon, build_throttle, main
from tools.config_validator import load_app_config

REPO_CONFIG = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    shutil.copytree(REPO_CONFIG, tmp_path / "config")
    data = tmp_path / "data"
    data.mkdir()
    (data / "positions.json").write_text(json.dumps({
        "positions": [
            {"asset": "So11111111111111111111111111111111111111112", "symbol": "SOL",
             "quantity": 2.0, "entry_price": 150.0, "current_price": 150.0, "decimals": 9},
        ]
    }))
    monkeypatch.chdir(tmp_path)
    return tmp_path


class TestBuild:
    """Component wiring"""

    def test_build_daemon(self, workdir):
        daemon = build_daemon("config")
        assert isinstance(daemon, TradingDaemon)
        assert daemon.state is DaemonState.STOPPED
        assert daemon.max_interval == 30
        assert {s.id for s in daemon.registry.get_all_strategies()} == {
            "dca_sol_daily", "grid_sol_usdc", "rebalance_core"
        }
        assert daemon.registry.get_enabled_strategies() == []
        assert daemon.services.can_trade_live() is False

    def test_throttle_policies_from_app_config(self, workdir):
        throttle = build_throttle(load_app_config(Path("config")))
        assert throttle.dependencies() == ["portfolio", "swap"]
        assert throttle.get_stats("swap")["effective_min_delay"] == 0.5
        assert throttle.get_stats("portfolio")["effective_min_delay"] == 0.2


class TestMain:
    """CLI entry point"""

    def test_once_runs_single_cycle(self, workdir):
        assert main(["--once", "--config-dir", "config"]) == 0
        assert (workdir / "logs" / "solharvest.log").exists()

    def test_invalid_config_refuses_to_start(self, workdir):
        (workdir / "config" / "trading.yaml").write_text("execution:\n  dry_run: sometimes\n")
        assert main(["--once", "--config-dir", "config"]) == 1

    def test_invalid_app_config(self, workdir):
        (workdir / "config" / "app.yaml").write_text("metrics:\n  port: 0\n")
        assert main(["--once", "--config-dir", "config"]) == 1
