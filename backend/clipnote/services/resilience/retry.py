"""
Retry executor with exponential backoff.

Wraps tenacity so every caller gets the same policy: bounded attempts,
`base_delay * backoff_multiplier ** (attempt - 1)` between tries, and the
final exception re-raised unchanged.

Example:
    executor = RetryExecutor()
    text = await executor.run(
        lambda: provider.process(prompt),
        key="Groq-process",
        max_attempts=2,
        base_delay=2.0,
    )
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from clipnote.services.ai_clients.base import is_quota_error

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_DELAY = 60.0  # seconds


def is_retryable(error: BaseException) -> bool:
    """
    Decide whether another local attempt makes sense.

    Not retried:
    - errors that declare `retryable = False` (circuit open, 4xx, quota)
    - quota / rate-limit errors detected from their message
    - input errors (ValueError, TypeError, KeyError)

    Everything else (timeouts, connection failures, 5xx, unknown errors)
    is retried.

    Args:
        error: Exception raised by the operation

    Returns:
        True if the executor should try again
    """
    if isinstance(error, asyncio.CancelledError):
        return False
    if is_quota_error(error):
        return False
    retryable = getattr(error, "retryable", None)
    if retryable is not None:
        return bool(retryable)
    if isinstance(error, (ValueError, TypeError, KeyError)):
        return False
    return True


@dataclass
class RetryStats:
    """Per-key counters kept by the executor.

    Attributes:
        attempts: Total operation invocations
        failures: Invocations that raised
        successes: Runs that ended with a result
        last_error: Message of the most recent failure
    """

    attempts: int = 0
    failures: int = 0
    successes: int = 0
    last_error: str | None = None


class RetryExecutor:
    """
    Bounded retry with exponential backoff.

    Retries are local to one call: they never switch provider or model.

    Attributes:
        should_retry: Predicate deciding if an error gets another attempt
        jitter: Upper bound of random seconds added to each wait
        max_delay: Cap on a single wait in seconds
    """

    def __init__(
        self,
        should_retry: Callable[[BaseException], bool] = is_retryable,
        jitter: float = 0.0,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize retry executor.

        Args:
            should_retry: Retry predicate (default: is_retryable)
            jitter: Random extra wait in seconds (0 = deterministic)
            max_delay: Maximum wait between attempts in seconds
            sleep: Sleep coroutine, replaceable in tests
        """
        self.should_retry = should_retry
        self.jitter = jitter
        self.max_delay = max_delay
        self._sleep = sleep
        self._stats: dict[str, RetryStats] = {}

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        key: str,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        stop_when: Callable[[], bool] | None = None,
    ) -> T:
        """
        Invoke `operation`, retrying failures with exponential backoff.

        Args:
            operation: Zero-argument coroutine factory
            key: Name used for logging and stats (e.g. "Groq-process")
            max_attempts: Total tries including the first
            base_delay: Wait before the second attempt, in seconds
            backoff_multiplier: Growth factor between consecutive waits
            stop_when: Checked after each failure; True re-raises it at once
                (e.g. the resource's circuit just opened)

        Returns:
            Result of the first successful attempt

        Raises:
            ValueError: If max_attempts < 1
            Exception: The last failure, unchanged
        """
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

        wait = wait_exponential(
            multiplier=base_delay,
            exp_base=backoff_multiplier,
            min=0,
            max=self.max_delay,
        )
        if self.jitter > 0:
            wait = wait + wait_random(0, self.jitter)

        stats = self._stats.setdefault(key, RetryStats())

        def should_retry(error: BaseException) -> bool:
            if not self.should_retry(error):
                return False
            if stop_when is not None and stop_when():
                logger.debug(f"{key}: retry stopped early ({error})")
                return False
            return True

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait,
            retry=retry_if_exception(should_retry),
            reraise=True,
            sleep=self._sleep,
            before_sleep=self._before_sleep(key, max_attempts),
        )

        async for attempt in retrying:
            with attempt:
                stats.attempts += 1
                try:
                    result = await operation()
                except Exception as e:
                    stats.failures += 1
                    stats.last_error = str(e)
                    raise

        stats.successes += 1
        return result

    def get_stats(self, key: str | None = None) -> dict[str, RetryStats]:
        """
        Get retry counters.

        Args:
            key: Single key to return (all keys if None)

        Returns:
            Mapping of key -> RetryStats
        """
        if key is not None:
            return {key: self._stats[key]} if key in self._stats else {}
        return dict(self._stats)

    def reset_stats(self) -> None:
        """Forget all counters."""
        self._stats.clear()

    @staticmethod
    def _before_sleep(key: str, max_attempts: int) -> Callable[[RetryCallState], None]:
        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                f"{key}: attempt {retry_state.attempt_number}/{max_attempts} failed "
                f"({error}); retrying in {delay:.1f}s"
            )

        return log_retry


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    key: str,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    backoff_multiplier: float = 2.0,
) -> T:
    """
    One-off retry with the default policy.

    Example:
        data = await with_retry(lambda: client.fetch(), "fetch-catalog", base_delay=0.5)
    """
    return await RetryExecutor().run(
        operation,
        key,
        max_attempts=max_attempts,
        base_delay=base_delay,
        backoff_multiplier=backoff_multiplier,
    )
