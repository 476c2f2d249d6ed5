"""
Tests for circuit breakers and the breaker registry.
"""

import threading

import pytest

from conductor.config.settings import CircuitBreakerConfig
from conductor.core.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from conductor.exceptions import CircuitOpenError


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("llm", failure_threshold=3, cooldown=10.0, clock=clock)


class TestCircuitBreaker:
    def test_starts_closed(self, breaker):
        assert breaker.state == CircuitState.CLOSED
        breaker.before_call()

    def test_opens_exactly_at_threshold(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_success_resets_consecutive_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.snapshot().consecutive_failures == 2

    def test_open_rejects_until_cooldown(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()

        clock.advance(9.9)
        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.before_call()
        assert exc_info.value.key == "llm"
        assert exc_info.value.retry_after == pytest.approx(0.1)

    def test_half_open_admits_exactly_one_trial(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(10.0)

        breaker.before_call()
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_trial_success_closes(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(10.0)

        breaker.before_call()
        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        breaker.before_call()

    def test_trial_failure_reopens_with_fresh_cooldown(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(10.0)

        breaker.before_call()
        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        clock.advance(5.0)
        with pytest.raises(CircuitOpenError):
            breaker.before_call()
        clock.advance(5.0)
        breaker.before_call()
        assert breaker.state == CircuitState.HALF_OPEN

    def test_released_trial_admits_next_caller(self, breaker, clock):
        for _ in range(3):
            breaker.record_failure()
        clock.advance(10.0)

        breaker.before_call()
        breaker.release_trial()

        assert breaker.state == CircuitState.HALF_OPEN
        breaker.before_call()
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

    def test_reset(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.snapshot().consecutive_failures == 0

    def test_invalid_configuration(self):
        with pytest.raises(ValueError):
            CircuitBreaker("x", failure_threshold=0)
        with pytest.raises(ValueError):
            CircuitBreaker("x", cooldown=0)

    def test_threshold_applied_once_under_concurrency(self, clock):
        breaker = CircuitBreaker("llm", failure_threshold=50, cooldown=10.0, clock=clock)
        transitions = []
        original = breaker._transition

        def spy(state):
            transitions.append(state)
            original(state)

        breaker._transition = spy

        threads = [threading.Thread(target=breaker.record_failure) for _ in range(200)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert breaker.state == CircuitState.OPEN
        assert breaker.snapshot().consecutive_failures == 200
        assert transitions == [CircuitState.OPEN]


class TestCircuitBreakerRegistry:
    def test_same_key_same_breaker(self, clock):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=2), clock=clock)
        assert registry.get("a") is registry.get("a")
        assert registry.get("a") is not registry.get("b")

    def test_breakers_use_config(self, clock):
        registry = CircuitBreakerRegistry(
            CircuitBreakerConfig(failure_threshold=2, cooldown=5.0), clock=clock
        )
        breaker = registry.get("a")
        assert breaker.failure_threshold == 2
        assert breaker.cooldown == 5.0

    def test_snapshots_and_reset_all(self, clock):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)
        registry.get("a").record_failure()
        registry.get("b")

        states = {s.key: s.state for s in registry.snapshots()}
        assert states == {"a": CircuitState.OPEN, "b": CircuitState.CLOSED}

        registry.reset_all()
        assert all(s.state == CircuitState.CLOSED for s in registry.snapshots())
