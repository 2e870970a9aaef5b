"""
File-backed portfolio feed.

Reads position snapshots written by an external portfolio tracker:

    {"positions": [{"asset": "...", "symbol": "BONK", "quantity": 1200.0,
                    "entry_price": 0.00002, "current_price": 0.00003,
                    "decimals": 5}, ...]}
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from core.models import Position

logger = logging.getLogger(__name__)


def _optional_float(value) -> Optional[float]:
    if value is None:
        return None
    return float(value)


class FilePortfolio:
    """PortfolioService reading a JSON snapshot file."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._positions: List[Position] = []

    def _parse(self, data) -> List[Position]:
        rows = data.get("positions", []) if isinstance(data, dict) else data
        positions = []
        for row in rows or []:
            try:
                positions.append(
                    Position(
                        asset=row["asset"],
                        symbol=row.get("symbol") or row["asset"][:6],
                        quantity=float(row.get("quantity", 0.0)),
                        entry_price=_optional_float(row.get("entry_price")),
                        current_price=_optional_float(row.get("current_price")),
                        decimals=int(row.get("decimals", 9)),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed position row {row!r}: {e}")
        return positions

    def refresh(self) -> List[Position]:
        """Re-read the snapshot file. Raises OSError / ValueError when unreadable."""
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        self._positions = self._parse(data)
        logger.debug(f"Loaded {len(self._positions)} positions from {self.path}")
        return list(self._positions)

    def get_positions(self) -> List[Position]:
        if not self._positions:
            return self.refresh()
        return list(self._positions)

    def decimals_for(self, asset: str) -> Optional[int]:
        by_asset: Dict[str, int] = {p.asset: p.decimals for p in self._positions}
        return by_asset.get(asset)
