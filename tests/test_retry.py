"""
Tests for retry policies and the retry executor.
"""

import asyncio

import pytest

from conductor.config.settings import RetryConfig
from conductor.core.circuit_breaker import CircuitBreaker, CircuitState
from conductor.core.retry import (
    ExponentialBackoff,
    FixedDelay,
    NoRetry,
    RetryExecutor,
    policy_from_config,
)
from conductor.exceptions import CircuitOpenError, ConfigurationError, ProviderError, ValidationError


class Flaky:
    """Callable failing a fixed number of times before returning a value."""

    def __init__(self, failures: int, error_factory=lambda n: ProviderError(f"boom {n}")):
        self.failures = failures
        self.error_factory = error_factory
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error_factory(self.calls)
        return f"ok after {self.calls}"


class TestPolicies:
    def test_no_retry_single_attempt(self):
        policy = NoRetry()
        assert policy.max_attempts == 1
        assert policy.delay_for(0) == 0.0

    def test_fixed_delay_is_constant(self):
        policy = FixedDelay(delay=0.5, max_attempts=4)
        assert [policy.delay_for(n) for n in range(3)] == [0.5, 0.5, 0.5]

    def test_exponential_backoff_grows_and_caps(self):
        policy = ExponentialBackoff(base=0.1, multiplier=2.0, max_delay=0.3, max_attempts=5)
        assert policy.delay_for(0) == pytest.approx(0.1)
        assert policy.delay_for(1) == pytest.approx(0.2)
        assert policy.delay_for(2) == pytest.approx(0.3)
        assert policy.delay_for(10) == pytest.approx(0.3)

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: FixedDelay(delay=-1),
            lambda: FixedDelay(max_attempts=0),
            lambda: ExponentialBackoff(multiplier=1.0),
            lambda: ExponentialBackoff(base=1.0, max_delay=0.5),
        ],
    )
    def test_invalid_policies_rejected(self, factory):
        with pytest.raises(ValueError):
            factory()

    def test_policies_compare_by_value(self):
        assert FixedDelay(1.0, 3) == FixedDelay(1.0, 3)
        assert NoRetry() == NoRetry()
        assert ExponentialBackoff(0.1) != FixedDelay(0.1)

    def test_policy_from_config(self):
        assert policy_from_config(RetryConfig(backoff="none")) == NoRetry()
        assert policy_from_config(RetryConfig(max_attempts=1)) == NoRetry()
        assert policy_from_config(RetryConfig(delay=2.0, max_attempts=4)) == FixedDelay(2.0, 4)
        assert policy_from_config(
            RetryConfig(backoff="exponential", delay=0.1, multiplier=3.0, max_delay=5.0)
        ) == ExponentialBackoff(base=0.1, multiplier=3.0, max_delay=5.0, max_attempts=3)


class TestRetryExecutor:
    @pytest.fixture
    def breaker(self, clock):
        return CircuitBreaker("default", failure_threshold=10, cooldown=30.0, clock=clock)

    @pytest.mark.asyncio
    async def test_first_attempt_success_invokes_once(self, sleep, breaker):
        fn = Flaky(failures=0)
        result = await RetryExecutor(sleep=sleep).run("s", FixedDelay(0.1, 5), breaker, fn)

        assert result == "ok after 1"
        assert fn.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_exponential_backoff_delays(self, sleep, breaker):
        """Two failures then success waits base then base * multiplier."""
        fn = Flaky(failures=2)
        policy = ExponentialBackoff(base=0.1, multiplier=2.0, max_attempts=3)

        result = await RetryExecutor(sleep=sleep).run("s", policy, breaker, fn)

        assert result == "ok after 3"
        assert fn.calls == 3
        assert sleep.delays == [pytest.approx(0.1), pytest.approx(0.2)]

    @pytest.mark.asyncio
    async def test_persistent_failure_invokes_exactly_max_attempts(self, sleep, breaker):
        fn = Flaky(failures=100)

        with pytest.raises(ProviderError, match="boom 4"):
            await RetryExecutor(sleep=sleep).run("s", FixedDelay(0.0, 4), breaker, fn)

        assert fn.calls == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_no_retry_policy(self, sleep, breaker):
        fn = Flaky(failures=1)
        with pytest.raises(ProviderError):
            await RetryExecutor(sleep=sleep).run("s", NoRetry(), breaker, fn)
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_validation_errors_are_retried(self, sleep, breaker):
        fn = Flaky(failures=2, error_factory=lambda n: ValidationError(f"bad {n}"))
        result = await RetryExecutor(sleep=sleep).run("s", FixedDelay(0.0, 3), breaker, fn)

        assert result == "ok after 3"
        assert breaker.snapshot().consecutive_failures == 0

    @pytest.mark.asyncio
    async def test_non_retryable_error_propagates_immediately(self, sleep, breaker):
        fn = Flaky(failures=5, error_factory=lambda n: ConfigurationError("fatal"))

        with pytest.raises(ConfigurationError):
            await RetryExecutor(sleep=sleep).run("s", FixedDelay(0.0, 5), breaker, fn)

        assert fn.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_provider_failures_count_toward_breaker(self, sleep, breaker):
        fn = Flaky(failures=2)
        await RetryExecutor(sleep=sleep).run("s", FixedDelay(0.0, 3), breaker, fn)

        # Success resets the consecutive count
        assert breaker.snapshot().consecutive_failures == 0
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_breaker_fails_without_invoking(self, sleep, clock):
        breaker = CircuitBreaker("default", failure_threshold=1, cooldown=30.0, clock=clock)
        breaker.record_failure()
        fn = Flaky(failures=0)

        with pytest.raises(CircuitOpenError) as exc_info:
            await RetryExecutor(sleep=sleep).run("s", FixedDelay(0.0, 3), breaker, fn)

        assert fn.calls == 0
        assert exc_info.value.retry_after == pytest.approx(30.0)

    @pytest.mark.asyncio
    async def test_breaker_opening_mid_retry_stops_attempts(self, sleep, clock):
        breaker = CircuitBreaker("default", failure_threshold=2, cooldown=30.0, clock=clock)
        fn = Flaky(failures=100)

        with pytest.raises(CircuitOpenError):
            await RetryExecutor(sleep=sleep).run("s", FixedDelay(0.0, 5), breaker, fn)

        assert fn.calls == 2
        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_cancelled_trial_does_not_wedge_breaker(self, sleep, clock):
        breaker = CircuitBreaker("default", failure_threshold=1, cooldown=30.0, clock=clock)
        breaker.record_failure()
        clock.advance(30.0)
        started = asyncio.Event()

        async def hang():
            started.set()
            await asyncio.Event().wait()

        task = asyncio.create_task(RetryExecutor(sleep=sleep).run("s", FixedDelay(0.0, 3), breaker, hang))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert breaker.state == CircuitState.HALF_OPEN
        result = await RetryExecutor(sleep=sleep).run("s", FixedDelay(0.0, 3), breaker, Flaky(failures=0))
        assert result == "ok after 1"
        assert breaker.state == CircuitState.CLOSED
