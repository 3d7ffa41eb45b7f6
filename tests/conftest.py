"""Pytest configuration and shared fixtures."""

import pytest

from attempt_engine.services.attempt_engine import AttemptEngine, EngineConfig
from tests.helpers.fakes import FakeAttemptStore, FakeCapability, FakeClock, make_payload

# Configure pytest-asyncio
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def calls() -> list[tuple]:
    """Call log shared by the fake store and the fake capability."""
    return []


@pytest.fixture
def store(clock: FakeClock, calls: list[tuple]) -> FakeAttemptStore:
    return FakeAttemptStore(make_payload(), clock=clock, calls=calls)


@pytest.fixture
def capability(calls: list[tuple]) -> FakeCapability:
    return FakeCapability(calls)


@pytest.fixture
def engine_config() -> EngineConfig:
    """Fast config: no real sleeps, ticks driven by the test."""
    return EngineConfig(
        max_violations=3,
        tick_interval_s=3600,
        sync_max_attempts=3,
        sync_retry_delay_s=0,
        submit_max_attempts=3,
        results_poll_interval_s=0,
        results_poll_max_attempts=3,
        media_restart_throttle_s=5,
    )


@pytest.fixture
async def engine(store, capability, clock, engine_config):
    """Loaded (not yet activated) engine. Closed after the test."""
    eng = AttemptEngine("att-1", store, capability, clock=clock, config=engine_config)
    await eng.load()
    yield eng
    await eng.close()


@pytest.fixture
async def active_engine(engine: AttemptEngine) -> AttemptEngine:
    assert await engine.activate()
    return engine
