"""Prometheus-backed metrics hooks for the daemon, executor, strategies and throttle."""

import logging
from dataclasses import dataclass
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Summary, start_http_server

logger = logging.getLogger(__name__)


@dataclass
class CycleStats:
    status: str  # "ok" | "error" | "skipped"
    strategies_executed: int
    opportunities: int
    trades: int
    duration_seconds: float


class MetricsRecorder:
    """
    Expose trading stats via Prometheus.

    Each recorder owns its own CollectorRegistry, so several recorders (one
    per test, one per daemon) never collide on metric registration. A
    disabled recorder accepts every call and records nothing.
    """

    def __init__(self, enabled: bool = True, port: int = 9100) -> None:
        self._enabled = bool(enabled)
        self._port = port
        self._started = False
        self.last_cycle: Optional[CycleStats] = None
        self.registry = CollectorRegistry()

        if not self._enabled:
            return

        self._cycle_counter = Counter(
            "solharvest_cycle_total",
            "Daemon cycles by status",
            labelnames=("status",),
            registry=self.registry,
        )
        self._cycle_summary = Summary(
            "solharvest_cycle_duration_seconds",
            "Duration of a full daemon cycle",
            registry=self.registry,
        )
        self._trade_counter = Counter(
            "solharvest_trades_total",
            "Profit-taking trade attempts by mode and result",
            labelnames=("mode", "result"),
            registry=self.registry,
        )
        self._strategy_counter = Counter(
            "solharvest_strategy_runs_total",
            "Strategy runs by kind and outcome",
            labelnames=("kind", "outcome"),
            registry=self.registry,
        )
        self._throttle_wait_summary = Summary(
            "solharvest_throttle_wait_seconds",
            "Time callers spent waiting on the throttle",
            labelnames=("dependency",),
            registry=self.registry,
        )
        self._circuit_counter = Counter(
            "solharvest_circuit_open_total",
            "Circuit breaker openings by dependency",
            labelnames=("dependency",),
            registry=self.registry,
        )
        self._opportunities_gauge = Gauge(
            "solharvest_current_opportunities",
            "Size of the current opportunity set",
            registry=self.registry,
        )
        self._daily_trades_gauge = Gauge(
            "solharvest_daily_trades",
            "Trades counted against today's limit",
            registry=self.registry,
        )

    @property
    def enabled(self) -> bool:
        return self._enabled

    def start(self) -> None:
        """Start the HTTP exporter once."""
        if not self._enabled or self._started:
            return
        start_http_server(self._port, registry=self.registry)
        self._started = True
        logger.info(f"Prometheus metrics exporter listening on :{self._port}")

    def record_cycle(self, stats: CycleStats) -> None:
        self.last_cycle = stats
        if not self._enabled:
            return
        self._cycle_counter.labels(status=stats.status).inc()
        self._cycle_summary.observe(stats.duration_seconds)

    def record_trade(self, dry_run: bool, success: bool) -> None:
        if not self._enabled:
            return
        self._trade_counter.labels(
            mode="dry_run" if dry_run else "live",
            result="success" if success else "failure",
        ).inc()

    def record_strategy_outcome(self, kind: str, outcome: str) -> None:
        if not self._enabled:
            return
        self._strategy_counter.labels(kind=kind, outcome=outcome).inc()

    def record_throttle_wait(self, dependency: str, seconds: float) -> None:
        if not self._enabled:
            return
        self._throttle_wait_summary.labels(dependency=dependency).observe(seconds)

    def record_circuit_open(self, dependency: str) -> None:
        if not self._enabled:
            return
        self._circuit_counter.labels(dependency=dependency).inc()

    def record_opportunities(self, count: int) -> None:
        if not self._enabled:
            return
        self._opportunities_gauge.set(count)

    def record_daily_trades(self, count: int) -> None:
        if not self._enabled:
            return
        self._daily_trades_gauge.set(count)

    def sample(self, name: str, labels: Optional[dict] = None) -> Optional[float]:
        """Current value of one sample (None if absent or disabled)."""
        if not self._enabled:
            return None
        return self.registry.get_sample_value(name, labels or {})
