"""
Retry policies and the retry executor.

A stage invocation is retried according to its policy:

- ``NoRetry``: exactly one attempt
- ``FixedDelay(delay)``: constant pause between attempts
- ``ExponentialBackoff(base, multiplier, max_delay)``: ``base * multiplier**n``
  before retry ``n`` (0-based), capped at ``max_delay``

The executor consults the stage's circuit breaker before every attempt. An
open breaker fails the stage with ``CircuitOpenError`` without invoking the
wrapped function or consuming an attempt.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from ..config.settings import RetryConfig
from ..exceptions import CircuitOpenError, ProviderError, ReviewerError, ValidationError
from ..observability.logging import get_logger
from ..observability.metrics import get_metrics_collector
from .circuit_breaker import CircuitBreaker

logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[Exception], ...] = (ProviderError, ValidationError)


@dataclass(frozen=True)
class NoRetry:
    max_attempts: int = field(default=1, init=False)

    def delay_for(self, retry_number: int) -> float:
        return 0.0


@dataclass(frozen=True)
class FixedDelay:
    delay: float = 1.0
    max_attempts: int = 3

    def __post_init__(self):
        if self.delay < 0:
            raise ValueError(f"delay cannot be negative: {self.delay}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got: {self.max_attempts}")

    def delay_for(self, retry_number: int) -> float:
        return self.delay


@dataclass(frozen=True)
class ExponentialBackoff:
    base: float = 0.1
    multiplier: float = 2.0
    max_delay: float = 30.0
    max_attempts: int = 3

    def __post_init__(self):
        if self.base < 0:
            raise ValueError(f"base cannot be negative: {self.base}")
        if self.multiplier <= 1.0:
            raise ValueError(f"multiplier must be > 1.0, got: {self.multiplier}")
        if self.max_delay < self.base:
            raise ValueError(f"max_delay must be >= base: {self.max_delay} vs {self.base}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got: {self.max_attempts}")

    def delay_for(self, retry_number: int) -> float:
        return min(self.base * self.multiplier**retry_number, self.max_delay)


RetryPolicy = NoRetry | FixedDelay | ExponentialBackoff


def policy_from_config(config: RetryConfig) -> RetryPolicy:
    """Default policy for stages that do not declare one."""
    if config.backoff == "none" or config.max_attempts == 1:
        return NoRetry()
    if config.backoff == "exponential":
        return ExponentialBackoff(
            base=config.delay,
            multiplier=config.multiplier,
            max_delay=max(config.max_delay, config.delay),
            max_attempts=config.max_attempts,
        )
    return FixedDelay(delay=config.delay, max_attempts=config.max_attempts)


class RetryExecutor:
    """
    Runs one stage invocation under a retry policy and a circuit breaker.

    ``ProviderError`` and ``ValidationError`` are retried. Any other exception,
    including ``CircuitOpenError``, propagates immediately. When attempts run
    out the last failure propagates unchanged.

    Breaker accounting: validation failures, reviewer failures and refusals
    from the reviewer's breaker mean the stage's provider answered, so they
    count as breaker successes. Other failures count against it. A cancelled
    attempt releases a half-open trial without recording an outcome.
    """

    def __init__(self, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self._sleep = sleep

    async def run(
        self,
        stage_key: str,
        policy: RetryPolicy,
        breaker: CircuitBreaker,
        fn: Callable[[], Awaitable[T]],
    ) -> T:
        metrics = get_metrics_collector()

        async def attempt() -> T:
            breaker.before_call()
            try:
                result = await fn()
            # The provider answered; a later check or a nested call failed
            except (ValidationError, ReviewerError, CircuitOpenError):
                breaker.record_success()
                metrics.record_attempt(stage_key, False)
                raise
            except Exception:
                breaker.record_failure()
                metrics.record_attempt(stage_key, False)
                raise
            except BaseException:
                breaker.release_trial()
                raise
            breaker.record_success()
            metrics.record_attempt(stage_key, True)
            return result

        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            delay = state.next_action.sleep if state.next_action else 0.0
            metrics.record_retry(stage_key, type(error).__name__)
            logger.warning(
                f"Attempt {state.attempt_number}/{policy.max_attempts} of '{stage_key}' "
                f"failed, retrying in {delay:.2f}s: {error}",
                error_type=type(error).__name__,
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            wait=lambda state: policy.delay_for(state.attempt_number - 1),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        async for retry_attempt in retrying:
            with retry_attempt:
                result = await attempt()
        return result
