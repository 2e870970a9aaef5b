"""
solharvest Core: Daily Trade Limit

Atomic daily trade counter shared by every path that submits profit-taking
trades.

- try_consume() checks and increments in one step under a lock, so
  concurrent opportunity processing can never overshoot the cap
- The counter resets exactly once when the UTC date differs from the recorded
  reference date; starting, stopping or re-enabling trading never resets it
"""

import logging
import threading
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class DailyTradeLimit:
    """
    Daily trade cap with date-based reset.

    Usage:
        limit = DailyTradeLimit(max_trades=10)
        limit.reset_if_new_day()
        if limit.try_consume():
            ...submit trade...
    """

    def __init__(self, max_trades: int = 10, today: Callable[[], date] = utc_today):
        """
        Args:
            max_trades: Trades allowed per UTC day (0 blocks all trading)
            today: Date provider (injectable for tests)
        """
        if max_trades < 0:
            raise ValueError(f"max_trades must be >= 0, got {max_trades}")
        self._today = today
        self._lock = threading.Lock()
        self._max_trades = max_trades
        self._count = 0
        self._reference_date = today()
        self.resets = 0

    @property
    def max_trades(self) -> int:
        return self._max_trades

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    @property
    def reference_date(self) -> date:
        with self._lock:
            return self._reference_date

    def remaining(self) -> int:
        with self._lock:
            return max(0, self._max_trades - self._count)

    def is_exhausted(self) -> bool:
        with self._lock:
            return self._count >= self._max_trades

    def set_limit(self, max_trades: int) -> None:
        if max_trades < 0:
            raise ValueError(f"max_trades must be >= 0, got {max_trades}")
        with self._lock:
            if max_trades != self._max_trades:
                logger.info(f"Daily trade limit changed: {self._max_trades} -> {max_trades}")
            self._max_trades = max_trades

    def reset_if_new_day(self, current: Optional[date] = None) -> bool:
        """
        Reset the counter if the date moved since the reference date.

        Returns:
            True if a reset happened
        """
        current = current or self._today()
        with self._lock:
            if current == self._reference_date:
                return False
            previous_date, previous_count = self._reference_date, self._count
            self._count = 0
            self._reference_date = current
            self.resets += 1
        logger.info(f"Resetting daily trade counter (was {previous_count} on {previous_date})")
        return True

    def try_consume(self) -> bool:
        """Atomically reserve one trade slot. False once the cap is reached."""
        with self._lock:
            if self._count >= self._max_trades:
                return False
            self._count += 1
            return True

    def release(self) -> None:
        """Give back a reserved slot that did not turn into a trade attempt."""
        with self._lock:
            if self._count > 0:
                self._count -= 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "date": self._reference_date.isoformat(),
                "count": self._count,
                "limit": self._max_trades,
            }

    def restore(self, snapshot: Optional[Dict[str, Any]]) -> None:
        """Restore today's count from a persisted snapshot; other days are ignored."""
        if not snapshot:
            return
        try:
            saved_date = date.fromisoformat(snapshot["date"])
            saved_count = int(snapshot["count"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring malformed daily trade snapshot: {e}")
            return
        with self._lock:
            if saved_date == self._reference_date:
                self._count = max(self._count, saved_count)
                logger.info(f"Restored daily trade count: {self._count}/{self._max_trades}")
