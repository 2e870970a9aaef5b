"""Test helpers for the solharvest test suite"""

from tests.helpers.service_stubs import (
    BONK_MINT,
    FakeClock,
    FakeUtcClock,
    MemoryStore,
    StubPortfolio,
    StubSwap,
    StubWallet,
    make_position,
    make_services,
    wait_for,
)

__all__ = [
    "BONK_MINT",
    "FakeClock",
    "FakeUtcClock",
    "MemoryStore",
    "StubPortfolio",
    "StubSwap",
    "StubWallet",
    "make_position",
    "make_services",
    "wait_for",
]
