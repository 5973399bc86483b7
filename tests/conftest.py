"""
Pytest configuration and fixtures for dlmm-autopilot tests.

This conftest.py provides shared fixtures for all tests.
"""
from decimal import Decimal

import pytest

from core.history import HistoricalAggregator
from core.pool_cache import PoolStateCache
from core.risk import RiskParameters
from infra.metrics import MetricsRecorder
from tests.helpers import FakeClock, FakePoolProvider, make_provider_snapshot


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def metrics():
    """Recorder on a private CollectorRegistry so tests never share collectors."""
    return MetricsRecorder(enabled=True)


@pytest.fixture
def provider(clock):
    fake = FakePoolProvider(clock=clock)
    fake.set(make_provider_snapshot())
    return fake


@pytest.fixture
def aggregator(clock):
    return HistoricalAggregator(now_fn=clock)


@pytest.fixture
def cache(provider, aggregator, clock, metrics):
    return PoolStateCache(
        provider=provider,
        aggregator=aggregator,
        staleness_seconds=30,
        now_fn=clock,
        metrics=metrics,
    )


@pytest.fixture
def risk_parameters():
    return RiskParameters(
        max_position_size=Decimal(10000),
        max_slippage=Decimal("0.02"),
        volatility_threshold=Decimal("0.5"),
        concentration_limit=Decimal("0.5"),
    )
