"""
solharvest Core: Opportunity Scanner

Turns position snapshots + profit targets into a prioritized list of
recommended partial sales.

Rules:
- Dust positions and positions without both an entry and a current price are
  excluded before matching
- A position qualifies once its profit % >= the minimum profit %
- Of all enabled targets whose trigger % <= the position's profit %, the one
  with the HIGHEST trigger wins
- Priority: >=200% URGENT, >=100% HIGH, >=50% MEDIUM, else LOW
- Output sorted by priority, then profit %, both descending

The current opportunity set is replaced wholesale on every refresh; the
scanner keeps no history of previous sets.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from core.dust_filter import DustThresholds, split_dust
from core.models import OpportunityPriority, Position, TradingOpportunity, utc_now
from core.trading_config import ProfitTarget, TradingSettings

logger = logging.getLogger(__name__)


@dataclass
class ScannerStats:
    checks_performed: int = 0
    assets_monitored: int = 0
    dust_filtered: int = 0
    opportunities_found: int = 0
    last_check: Optional[datetime] = None


def best_target(profit_pct: float, targets: Iterable[ProfitTarget]) -> Optional[ProfitTarget]:
    """Highest enabled target whose trigger the position has already crossed."""
    qualifying = [t for t in targets if t.enabled and t.trigger_pct <= profit_pct]
    if not qualifying:
        return None
    return max(qualifying, key=lambda t: t.trigger_pct)


class OpportunityScanner:
    """
    Scans positions for profit-taking opportunities.

    scan() is pure; refresh() pulls positions once from the services gateway
    and swaps in the new current set.
    """

    def __init__(self, metrics: Any = None, clock: Callable[[], datetime] = utc_now):
        self._metrics = metrics
        self._clock = clock
        self._lock = threading.Lock()
        self._current: List[TradingOpportunity] = []
        self.stats = ScannerStats()

    def scan(
        self,
        positions: Iterable[Position],
        targets: Iterable[ProfitTarget],
        minimum_profit_pct: float,
        dust: Optional[DustThresholds] = None,
    ) -> List[TradingOpportunity]:
        """
        Match positions against targets.

        Args:
            positions: Fresh position snapshots
            targets: Configured profit targets (disabled ones are ignored)
            minimum_profit_pct: Positions below this profit are skipped
            dust: Dust thresholds (defaults to $0.01 / 0.001 SOL)

        Returns:
            Opportunities sorted by priority then profit, descending
        """
        targets = list(targets)
        tradeable, dust_positions = split_dust(positions, dust or DustThresholds())
        if dust_positions:
            logger.debug(f"Filtered {len(dust_positions)} dust positions")

        now = self._clock()
        opportunities: List[TradingOpportunity] = []

        for position in tradeable:
            profit_pct = position.profit_pct
            if profit_pct is None:
                logger.debug(f"{position.symbol}: missing entry or current price, skipped")
                continue
            if profit_pct < minimum_profit_pct:
                continue

            target = best_target(profit_pct, targets)
            if target is None:
                continue

            proceeds = position.quantity * (target.sell_pct / 100.0) * position.current_price
            opportunities.append(
                TradingOpportunity(
                    id=f"opp_{position.asset[:8]}_{target.id}",
                    position=position,
                    target_id=target.id,
                    target_name=target.name,
                    trigger_pct=target.trigger_pct,
                    sell_pct=target.sell_pct,
                    profit_pct=profit_pct,
                    priority=OpportunityPriority.from_profit(profit_pct),
                    estimated_proceeds_usd=proceeds,
                    created_at=now,
                )
            )

        opportunities.sort(key=lambda o: (o.priority.value, o.profit_pct), reverse=True)
        return opportunities

    def refresh(self, positions: List[Position], settings: TradingSettings) -> List[TradingOpportunity]:
        """
        Replace the current opportunity set with a scan of this cycle's
        position snapshot.
        """
        risk = settings.risk_management
        dust = DustThresholds(usd=risk.dust_threshold_usd, native_quantity=risk.native_dust_quantity)

        opportunities = self.scan(
            positions,
            settings.enabled_targets() if settings.profit_taking.enabled else [],
            risk.require_minimum_profit_pct,
            dust,
        )

        with self._lock:
            self._current = opportunities
            self.stats.checks_performed += 1
            self.stats.assets_monitored = len(positions)
            self.stats.dust_filtered = sum(1 for p in positions if dust.is_dust(p))
            self.stats.opportunities_found += len(opportunities)
            self.stats.last_check = self._clock()

        if opportunities:
            logger.info(
                f"Found {len(opportunities)} opportunities: "
                + ", ".join(f"{o.position.symbol} +{o.profit_pct:.1f}% [{o.priority.name}]" for o in opportunities)
            )
        else:
            logger.debug(f"No opportunities across {len(positions)} positions")

        if self._metrics is not None:
            self._metrics.record_opportunities(len(opportunities))
        return list(opportunities)

    def current_opportunities(self) -> List[TradingOpportunity]:
        with self._lock:
            return list(self._current)

    def clear(self) -> None:
        with self._lock:
            self._current = []

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "checks_performed": self.stats.checks_performed,
                "assets_monitored": self.stats.assets_monitored,
                "dust_filtered": self.stats.dust_filtered,
                "opportunities_found": self.stats.opportunities_found,
                "current_opportunities": len(self._current),
                "last_check": self.stats.last_check.isoformat() if self.stats.last_check else None,
            }
