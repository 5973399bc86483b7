"""Test helpers for dlmm-autopilot test suite"""

from tests.helpers.pool_stubs import (
    POOL_ADDRESS,
    T0,
    FakeClock,
    FakePoolProvider,
    make_bins,
    make_pool,
    make_provider_snapshot,
    make_pool_snapshot,
    make_market_data,
)

__all__ = [
    "POOL_ADDRESS",
    "T0",
    "FakeClock",
    "FakePoolProvider",
    "make_bins",
    "make_pool",
    "make_provider_snapshot",
    "make_pool_snapshot",
    "make_market_data",
]
