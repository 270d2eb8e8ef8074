"""
Retry and throttle policy for GitHub API calls.

Each call moves through an explicit state machine:

    ATTEMPTING --success--> SUCCEEDED
    ATTEMPTING --failure--> decide() --> WAITING --sleep--> ATTEMPTING
                                     \-> FAILED

`decide()` is a pure function of the classified error, the attempt index
and the per-call rate limit counters, so every transition is testable
without a network. `run()` drives the loop and returns a `RetryOutcome`
instead of raising; callers unwrap it once at the end.

Rate limits are handled separately from generic failures: they bypass the
`do_not_retry` list (a rate-limited 403 is not a permission error), wait
for at least the server-provided Retry-After, and are bounded by their own
counters as well as the overall retry ceiling.
"""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from contribux.services.github.config import RetryConfig, ThrottleConfig
from contribux.services.github.constants import (
    DEFAULT_BASE_DELAY,
    DEFAULT_DO_NOT_RETRY,
    DEFAULT_JITTER,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RATE_LIMIT_RETRIES,
    DEFAULT_MAX_SECONDARY_RATE_LIMIT_RETRIES,
    DEFAULT_RATE_LIMIT_DELAY,
    DEFAULT_SECONDARY_RATE_LIMIT_DELAY,
    MAX_RETRIES_LIMIT,
)
from contribux.services.github.exceptions import GitHubAPIError, RateLimitError
from contribux.services.github.types import RequestContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

ThrottleHook = Callable[[float, RequestContext | None, int], Any]
Sleep = Callable[[float], Awaitable[Any]]


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryDecision:
    """Next state after a failed attempt, with the wait before the next one."""

    state: RetryState
    delay: float = 0.0
    reason: str = ""

    @property
    def should_retry(self) -> bool:
        return self.state is RetryState.WAITING


@dataclass
class RetryCounters:
    """Rate limit retries already spent by one call."""

    rate_limit: int = 0
    secondary_rate_limit: int = 0


@dataclass
class RetryOutcome(Generic[T]):
    """Result of a retried call: either a value or the last classified error."""

    value: T | None = None
    error: GitHubAPIError | None = None
    attempts: int = 0
    delays: list[float] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def state(self) -> RetryState:
        return RetryState.SUCCEEDED if self.ok else RetryState.FAILED

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class RetryPolicy:
    """Decides whether and when a failed GitHub call is attempted again."""

    def __init__(
        self,
        retries: int,
        do_not_retry: Iterable[str | int] = DEFAULT_DO_NOT_RETRY,
        *,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        rate_limit_delay: float = DEFAULT_RATE_LIMIT_DELAY,
        secondary_rate_limit_delay: float = DEFAULT_SECONDARY_RATE_LIMIT_DELAY,
        max_rate_limit_retries: int = DEFAULT_MAX_RATE_LIMIT_RETRIES,
        max_secondary_rate_limit_retries: int = DEFAULT_MAX_SECONDARY_RATE_LIMIT_RETRIES,
        on_rate_limit: ThrottleHook | None = None,
        on_secondary_rate_limit: ThrottleHook | None = None,
        throttle_enabled: bool = True,
        rng: Callable[[], float] = random.random,
        clock: Callable[[], float] = time.time,
    ):
        if not 0 <= retries <= MAX_RETRIES_LIMIT:
            raise ValueError(f"retries must be between 0 and {MAX_RETRIES_LIMIT}")
        self.retries = retries
        self.do_not_retry = frozenset(str(status) for status in do_not_retry)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.rate_limit_delay = rate_limit_delay
        self.secondary_rate_limit_delay = secondary_rate_limit_delay
        self.max_rate_limit_retries = max_rate_limit_retries
        self.max_secondary_rate_limit_retries = max_secondary_rate_limit_retries
        self.on_rate_limit = on_rate_limit
        self.on_secondary_rate_limit = on_secondary_rate_limit
        self.throttle_enabled = throttle_enabled
        self._rng = rng
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        retry: RetryConfig,
        throttle: ThrottleConfig | None = None,
        **overrides: Any,
    ) -> "RetryPolicy":
        throttle = throttle or ThrottleConfig()
        kwargs: dict[str, Any] = {
            "base_delay": retry.base_delay,
            "max_delay": retry.max_delay,
            "jitter": retry.jitter,
            "rate_limit_delay": throttle.rate_limit_delay,
            "secondary_rate_limit_delay": throttle.secondary_rate_limit_delay,
            "max_rate_limit_retries": throttle.max_rate_limit_retries,
            "max_secondary_rate_limit_retries": throttle.max_secondary_rate_limit_retries,
            "on_rate_limit": throttle.on_rate_limit,
            "on_secondary_rate_limit": throttle.on_secondary_rate_limit,
            "throttle_enabled": throttle.enabled,
        }
        kwargs.update(overrides)
        return cls(retry.retries, retry.do_not_retry, **kwargs)

    def compute_backoff(self, attempt: int) -> float:
        """Exponential backoff for the retry after failed attempt `attempt` (0-based)."""
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay *= 1 + self.jitter * (2 * self._rng() - 1)
        return max(0.0, min(delay, self.max_delay))

    def compute_rate_limit_delay(self, error: RateLimitError) -> float:
        """
        Wait before retrying a rate-limited call.

        Retry-After wins when present. A primary limit otherwise waits for
        the quota window to reset; a secondary limit uses its fixed window.
        No jitter is applied, so the wait never undercuts the server's hint.
        """
        if error.retry_after is not None:
            return max(0.0, error.retry_after)
        if error.secondary:
            return self.secondary_rate_limit_delay
        if error.rate_limit_reset is not None:
            # One extra second so we land after the reset, not on it
            return max(0.0, error.rate_limit_reset - self._clock()) + 1.0
        return self.rate_limit_delay

    def _decide_rate_limit(
        self,
        error: RateLimitError,
        attempt: int,
        counters: RetryCounters,
        context: RequestContext | None,
    ) -> RetryDecision:
        if not self.throttle_enabled:
            return RetryDecision(RetryState.FAILED, reason="throttling disabled")
        if attempt >= self.retries:
            return RetryDecision(RetryState.FAILED, reason="retry limit reached")

        if error.secondary:
            count, limit = counters.secondary_rate_limit, self.max_secondary_rate_limit_retries
            hook, kind = self.on_secondary_rate_limit, "secondary rate limit"
        else:
            count, limit = counters.rate_limit, self.max_rate_limit_retries
            hook, kind = self.on_rate_limit, "rate limit"

        if count >= limit:
            return RetryDecision(RetryState.FAILED, reason=f"{kind} retries exhausted")

        delay = self.compute_rate_limit_delay(error)
        if hook is not None and not hook(delay, context, count):
            return RetryDecision(RetryState.FAILED, reason=f"{kind} retry vetoed by hook")

        if error.secondary:
            counters.secondary_rate_limit += 1
        else:
            counters.rate_limit += 1
        return RetryDecision(RetryState.WAITING, delay, kind)

    def decide(
        self,
        error: GitHubAPIError,
        attempt: int,
        counters: RetryCounters | None = None,
        context: RequestContext | None = None,
    ) -> RetryDecision:
        """
        Decide the transition after failed attempt `attempt` (0-based).

        Args:
            error: Classified error from the attempt
            attempt: Index of the attempt that just failed
            counters: Per-call rate limit counters, updated when a rate limit
                retry is granted
            context: Request context passed to the throttle hooks

        Returns:
            WAITING with a delay, or FAILED with the reason
        """
        counters = counters if counters is not None else RetryCounters()

        if isinstance(error, RateLimitError):
            return self._decide_rate_limit(error, attempt, counters, context)
        if not error.retryable:
            return RetryDecision(RetryState.FAILED, reason=f"{error.category.value} error")
        if error.status_code is not None and str(error.status_code) in self.do_not_retry:
            return RetryDecision(RetryState.FAILED, reason=f"status {error.status_code}")
        if attempt >= self.retries:
            return RetryDecision(RetryState.FAILED, reason="retry limit reached")
        return RetryDecision(RetryState.WAITING, self.compute_backoff(attempt), "backoff")

    async def run(
        self,
        operation: Callable[[RequestContext], Awaitable[T]],
        context: RequestContext,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> RetryOutcome[T]:
        """
        Drive `operation` through the retry state machine.

        `operation` receives the context for the current attempt and either
        returns a value or raises a classified `GitHubAPIError`. Anything
        else (including cancellation) propagates immediately.
        """
        counters = RetryCounters()
        delays: list[float] = []
        attempt = 0
        while True:
            attempt_context = context.with_attempt(attempt)
            try:
                value = await operation(attempt_context)
            except GitHubAPIError as e:
                error = e
            else:
                return RetryOutcome(value=value, attempts=attempt + 1, delays=delays)

            decision = self.decide(error, attempt, counters, attempt_context)
            if not decision.should_retry:
                if attempt:
                    logger.warning(
                        f"Giving up on {context.operation} after {attempt + 1} attempts: "
                        f"{decision.reason}"
                    )
                return RetryOutcome(error=error, attempts=attempt + 1, delays=delays)

            logger.warning(
                f"Retrying {context.operation} (attempt {attempt + 1}/{self.retries}) "
                f"in {decision.delay:.2f}s: {decision.reason}"
            )
            delays.append(decision.delay)
            await sleep(decision.delay)
            attempt += 1


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Stops calling GitHub after repeated server/network failures.

    After `failure_threshold` failures the circuit opens and calls are
    refused until `recovery_timeout` seconds have passed. The circuit then
    half-opens: one failure reopens it, while min(threshold, 3) consecutive
    successes close it again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.enabled = enabled
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_at = 0.0

    def state(self) -> CircuitState:
        if (
            self._state is CircuitState.OPEN
            and self._clock() - self._last_failure_at >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            self._successes = 0
        return self._state

    @property
    def failures(self) -> int:
        return self._failures

    def can_execute(self) -> bool:
        if not self.enabled:
            return True
        return self.state() is not CircuitState.OPEN

    def retry_in(self) -> float:
        """Seconds until an open circuit half-opens."""
        if self.state() is not CircuitState.OPEN:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._clock() - self._last_failure_at))

    def record_success(self) -> None:
        if not self.enabled:
            return
        state = self.state()
        self._successes += 1
        if state is CircuitState.HALF_OPEN:
            if self._successes >= min(self.failure_threshold, 3):
                logger.info("Circuit breaker closed")
                self._state = CircuitState.CLOSED
                self._failures = 0
        elif state is CircuitState.CLOSED:
            self._failures = max(0, self._failures - 1)

    def record_failure(self) -> None:
        if not self.enabled:
            return
        state = self.state()
        self._failures += 1
        self._last_failure_at = self._clock()
        if state is CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            if state is not CircuitState.OPEN:
                logger.warning(f"Circuit breaker opened after {self._failures} failures")
            self._state = CircuitState.OPEN

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_at = 0.0
