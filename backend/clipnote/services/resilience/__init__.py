"""
Resilience primitives: retry executor, circuit breakers, timeouts and races.
"""

from clipnote.services.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
)
from clipnote.services.resilience.concurrency import (
    CancellationRegistry,
    OperationCancelledError,
    OperationTimeoutError,
    RaceError,
    first_success,
    race_endpoints,
    run_with_timeout,
)
from clipnote.services.resilience.retry import RetryExecutor, is_retryable, with_retry

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "CancellationRegistry",
    "OperationCancelledError",
    "OperationTimeoutError",
    "RaceError",
    "first_success",
    "race_endpoints",
    "run_with_timeout",
    "RetryExecutor",
    "is_retryable",
    "with_retry",
]
