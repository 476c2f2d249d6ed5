"""
Global pytest configuration and fixtures for test isolation.

Resets module-level state (metrics collector, probe timings, cached settings,
trace id) around every test and provides small building blocks: a recording
sleep for the retry executor, a fake clock for breakers, and an orchestrator
wired to a scripted mock provider.
"""

import pytest

from conductor.agents.providers import MockProvider
from conductor.config.settings import Settings, get_settings
from conductor.core.circuit_breaker import CircuitBreakerRegistry
from conductor.core.engine import WorkflowEngine
from conductor.core.orchestrator import Orchestrator
from conductor.core.retry import RetryExecutor
from conductor.observability.logging import set_stage_id, set_trace_id
from conductor.observability.metrics import reset_metrics
from conductor.observability.probe import clear_trace_metrics


def reset_all_global_state():
    reset_metrics()
    clear_trace_metrics()
    get_settings.cache_clear()
    set_trace_id(None)
    set_stage_id(None)


@pytest.fixture(autouse=True)
def test_isolation(monkeypatch):
    """Per-test isolation: no CONDUCTOR_* leakage and clean globals."""
    import os

    for key in list(os.environ):
        if key.startswith("CONDUCTOR_"):
            monkeypatch.delenv(key)
    reset_all_global_state()
    yield
    reset_all_global_state()


class RecordingSleep:
    """Async sleep replacement that records requested delays and returns at once."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    """Settings with fast retries and a short approval timeout."""
    return Settings(
        environment="test",
        retry={"max_attempts": 3, "delay": 0.0, "backoff": "fixed"},
        approval={"timeout": 1.0, "max_regenerate": 3},
        circuit_breaker={"failure_threshold": 5, "cooldown": 60.0},
        workflow={"worker_pool_size": 4},
    )


@pytest.fixture
def provider():
    return MockProvider(name="default")


@pytest.fixture
def orchestrator(settings, provider):
    orch = Orchestrator(settings=settings)
    orch.register_provider("default", provider)
    return orch


@pytest.fixture
def make_engine(orchestrator, settings, sleep, clock):
    """Factory for engines sharing the test's orchestrator, sleep and clock."""

    def _make(approval_channel=None, engine_settings=None):
        engine_settings = engine_settings or settings
        return WorkflowEngine(
            orchestrator,
            settings=engine_settings,
            approval_channel=approval_channel,
            retry_executor=RetryExecutor(sleep=sleep),
            breakers=CircuitBreakerRegistry(engine_settings.circuit_breaker, clock=clock),
        )

    return _make
