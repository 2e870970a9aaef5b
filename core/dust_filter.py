"""Dust detection: positions too small to be worth trading."""

from dataclasses import dataclass
from typing import Iterable, List, Tuple

from core.models import SOL_MINT, Position


@dataclass(frozen=True)
class DustThresholds:
    usd: float = 0.01
    native_quantity: float = 0.001  # SOL kept back for fees
    native_asset: str = SOL_MINT

    def is_dust(self, position: Position) -> bool:
        if position.asset == self.native_asset:
            return position.quantity < self.native_quantity
        return position.value_usd < self.usd


def split_dust(positions: Iterable[Position], thresholds: DustThresholds) -> Tuple[List[Position], List[Position]]:
    """Return (tradeable, dust)."""
    tradeable: List[Position] = []
    dust: List[Position] = []
    for position in positions:
        (dust if thresholds.is_dust(position) else tradeable).append(position)
    return tradeable, dust
