"""
Circuit breaker and per-resource registry.

State machine:
    closed    -- failures reach threshold -->  open
    open      -- recovery timeout elapsed, next call -->  half-open
    half-open -- trial success -->  closed (failure count 0)
    half-open -- trial failure -->  open (recovery timer restarted)

While open, calls fail immediately with CircuitOpenError and the wrapped
operation is never invoked. State transitions happen under an asyncio.Lock;
the operation itself runs outside the lock.

Example:
    registry = CircuitBreakerRegistry()
    breaker = registry.get("Groq")
    text = await breaker.call(lambda: groq.process(prompt))
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


@dataclass
class CircuitBreakerConfig:
    """
    Circuit breaker tuning.

    Attributes:
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds to stay open before allowing trials
        half_open_max_calls: Trial calls admitted while half-open
    """

    failure_threshold: int = 3
    recovery_timeout: float = 30.0
    half_open_max_calls: int = 2


class CircuitOpenError(Exception):
    """
    Raised instead of calling a resource whose circuit is open.

    Attributes:
        name: Breaker (resource) name
        retry_after: Seconds until a trial call will be admitted
    """

    retryable = False

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit '{name}' is open; next trial in {max(retry_after, 0.0):.1f}s"
        )


class CircuitBreaker:
    """
    Failure gate for one named resource.

    Attributes:
        name: Resource name (typically a provider name)
        config: Thresholds and timeouts
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize breaker in the closed state.

        Args:
            name: Resource name
            config: Tuning (defaults if None)
            clock: Monotonic time source, replaceable in tests
        """
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = asyncio.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._opened_at: float | None = None
        self._half_open_calls = 0

        self._total_calls = 0
        self._total_failures = 0
        self._total_rejections = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` if the circuit allows it.

        Args:
            operation: Zero-argument coroutine factory

        Returns:
            Operation result

        Raises:
            CircuitOpenError: If the circuit is open or the trial budget is used up
            Exception: Whatever the operation raised (after recording the failure)
        """
        await self._acquire()

        try:
            result = await operation()
        except asyncio.CancelledError:
            await self._release_trial()
            raise
        except Exception as e:
            await self._record_failure(e)
            raise

        await self._record_success()
        return result

    def can_execute(self) -> bool:
        """
        Non-mutating check whether a call would be admitted right now.

        Returns:
            True if closed, half-open with budget left, or open past the timeout
        """
        if self._state == CircuitState.CLOSED:
            return True
        if self._state == CircuitState.HALF_OPEN:
            return self._half_open_calls < self.config.half_open_max_calls
        return self._time_until_trial() <= 0

    async def reset(self) -> None:
        """Force the breaker back to closed."""
        async with self._lock:
            self._transition(CircuitState.CLOSED)
            self._failure_count = 0
            self._half_open_calls = 0
            self._opened_at = None

    def get_stats(self) -> dict:
        """
        Snapshot for diagnostics.

        Returns:
            Dict with state, counters and seconds until the next trial
        """
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.config.failure_threshold,
            "total_calls": self._total_calls,
            "total_failures": self._total_failures,
            "total_rejections": self._total_rejections,
            "retry_after": (
                max(self._time_until_trial(), 0.0)
                if self._state == CircuitState.OPEN
                else 0.0
            ),
        }

    # ───────────────────────────────────────────────────────────────────────
    # Transitions (always under self._lock)
    # ───────────────────────────────────────────────────────────────────────

    async def _acquire(self) -> None:
        async with self._lock:
            if self._state == CircuitState.OPEN:
                wait = self._time_until_trial()
                if wait > 0:
                    self._total_rejections += 1
                    raise CircuitOpenError(self.name, wait)
                self._transition(CircuitState.HALF_OPEN)
                self._half_open_calls = 0

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    self._total_rejections += 1
                    raise CircuitOpenError(self.name, 0.0)
                self._half_open_calls += 1

            self._total_calls += 1

    async def _record_success(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.CLOSED)
                self._half_open_calls = 0
                self._opened_at = None
            self._failure_count = 0

    async def _record_failure(self, error: Exception) -> None:
        async with self._lock:
            now = self._clock()
            self._failure_count += 1
            self._total_failures += 1
            self._last_failure_time = now

            if self._state == CircuitState.HALF_OPEN:
                self._open(now)
                logger.warning(f"Circuit '{self.name}' trial failed: {error}")
            elif (
                self._state == CircuitState.CLOSED
                and self._failure_count >= self.config.failure_threshold
            ):
                self._open(now)
                logger.warning(
                    f"Circuit '{self.name}' opened after "
                    f"{self._failure_count} consecutive failures: {error}"
                )

    async def _release_trial(self) -> None:
        async with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def _open(self, now: float) -> None:
        self._transition(CircuitState.OPEN)
        self._opened_at = now
        self._half_open_calls = 0

    def _transition(self, new_state: CircuitState) -> None:
        if new_state != self._state:
            logger.info(f"Circuit '{self.name}': {self._state.value} -> {new_state.value}")
            self._state = new_state

    def _time_until_trial(self) -> float:
        if self._opened_at is None:
            return 0.0
        return self.config.recovery_timeout - (self._clock() - self._opened_at)


class CircuitBreakerRegistry:
    """
    Breakers keyed by resource name, created lazily on first use.

    One registry is built per service container; every component that
    talks to a provider gets its breaker from the same registry.

    Example:
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=5))
        await registry.get("Google Gemini").call(operation)
        print(registry.stats())
    """

    def __init__(
        self,
        default_config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize empty registry.

        Args:
            default_config: Config for breakers created without one
            clock: Time source shared by all breakers
        """
        self.default_config = default_config or CircuitBreakerConfig()
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str, config: CircuitBreakerConfig | None = None) -> CircuitBreaker:
        """
        Get the breaker for `name`, creating it on first use.

        Args:
            name: Resource name
            config: Config used only if the breaker does not exist yet

        Returns:
            The single breaker instance for this name
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, config or self.default_config, self._clock)
            self._breakers[name] = breaker
            logger.debug(f"Created circuit breaker '{name}'")
        return breaker

    def names(self) -> list[str]:
        return list(self._breakers)

    def stats(self) -> dict[str, dict]:
        """Stats of every breaker, keyed by name."""
        return {name: breaker.get_stats() for name, breaker in self._breakers.items()}

    async def reset(self, name: str) -> bool:
        """
        Reset one breaker.

        Returns:
            False if no breaker with that name exists
        """
        breaker = self._breakers.get(name)
        if breaker is None:
            return False
        await breaker.reset()
        return True

    async def reset_all(self) -> None:
        """Reset every breaker to closed."""
        for breaker in self._breakers.values():
            await breaker.reset()

    def __contains__(self, name: str) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)
