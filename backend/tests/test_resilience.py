"""
Tests for retry, circuit breakers, timeouts, races and cancellation.
"""

import asyncio
import inspect
import logging

import httpx
import pytest
import respx

from clipnote.services.ai_clients.base import (
    AIClientQuotaError,
    AIClientResponseError,
    AIClientTimeoutError,
)
from clipnote.services.resilience import (
    CancellationRegistry,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
    OperationCancelledError,
    OperationTimeoutError,
    RaceError,
    RetryExecutor,
    first_success,
    is_retryable,
    race_endpoints,
    run_with_timeout,
)
from tests.fakes import no_sleep


class Flaky:
    """Fails `failures` times, then returns `result`."""

    def __init__(self, failures: int, error: Exception | None = None, result: str = "ok"):
        self.failures = failures
        self.error = error or ConnectionError("connection reset")
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


# ═══════════════════════════════════════════════════════════════════════════
# Retry
# ═══════════════════════════════════════════════════════════════════════════


class TestIsRetryable:
    def test_transient_errors_are_retried(self):
        assert is_retryable(ConnectionError("reset"))
        assert is_retryable(AIClientTimeoutError("slow"))
        assert is_retryable(AIClientResponseError("bad gateway", status_code=502))

    def test_permanent_errors_are_not_retried(self):
        assert not is_retryable(AIClientResponseError("bad request", status_code=400))
        assert not is_retryable(AIClientQuotaError("slow down", status_code=429))
        assert not is_retryable(RuntimeError("Rate limit exceeded for model"))
        assert not is_retryable(ValueError("empty prompt"))
        assert not is_retryable(CircuitOpenError("Groq", 10.0))


class TestRetryExecutor:
    async def test_succeeds_after_transient_failures(self):
        delays: list[float] = []

        async def record(delay: float) -> None:
            delays.append(delay)

        executor = RetryExecutor(sleep=record)
        operation = Flaky(failures=2)

        result = await executor.run(operation, "flaky", max_attempts=3, base_delay=1.0)

        assert result == "ok"
        assert operation.calls == 3
        assert delays == [1.0, 2.0]

        stats = executor.get_stats("flaky")["flaky"]
        assert stats.attempts == 3
        assert stats.failures == 2
        assert stats.successes == 1

    async def test_reraises_last_error_when_attempts_run_out(self):
        executor = RetryExecutor(sleep=no_sleep)
        operation = Flaky(failures=5)

        with pytest.raises(ConnectionError, match="connection reset"):
            await executor.run(operation, "down", max_attempts=2)

        assert operation.calls == 2
        assert executor.get_stats("down")["down"].last_error == "connection reset"

    async def test_permanent_error_is_not_retried(self):
        executor = RetryExecutor(sleep=no_sleep)
        operation = Flaky(failures=5, error=AIClientQuotaError("quota exceeded"))

        with pytest.raises(AIClientQuotaError):
            await executor.run(operation, "quota", max_attempts=3)

        assert operation.calls == 1

    async def test_delay_is_capped(self):
        delays: list[float] = []

        async def record(delay: float) -> None:
            delays.append(delay)

        executor = RetryExecutor(sleep=record, max_delay=3.0)
        await executor.run(Flaky(failures=3), "capped", max_attempts=4, base_delay=2.0)

        assert delays == [2.0, 3.0, 3.0]

    async def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            await RetryExecutor().run(Flaky(0), "zero", max_attempts=0)

    async def test_stop_when_ends_retries_with_the_live_error(self):
        executor = RetryExecutor(sleep=no_sleep)
        operation = Flaky(failures=5)

        with pytest.raises(ConnectionError, match="connection reset"):
            await executor.run(
                operation, "tripped", max_attempts=4, stop_when=lambda: operation.calls >= 2
            )

        assert operation.calls == 2

    def test_unknown_key_has_no_stats(self):
        assert RetryExecutor().get_stats("missing") == {}

    async def test_reset_stats(self):
        executor = RetryExecutor(sleep=no_sleep)
        await executor.run(Flaky(failures=1), "once", max_attempts=2)

        executor.reset_stats()

        assert executor.get_stats() == {}


# ═══════════════════════════════════════════════════════════════════════════
# Circuit breaker
# ═══════════════════════════════════════════════════════════════════════════


async def fail() -> None:
    raise ConnectionError("down")


async def succeed() -> str:
    return "ok"


class TestCircuitBreaker:
    @pytest.fixture
    def breaker(self, clock) -> CircuitBreaker:
        config = CircuitBreakerConfig(failure_threshold=3, recovery_timeout=30, half_open_max_calls=2)
        return CircuitBreaker("Groq", config, clock=clock)

    async def trip(self, breaker: CircuitBreaker) -> None:
        for _ in range(breaker.config.failure_threshold):
            with pytest.raises(ConnectionError):
                await breaker.call(fail)

    async def test_opens_after_threshold(self, breaker):
        await self.trip(breaker)

        assert breaker.state == CircuitState.OPEN
        assert not breaker.can_execute()

        calls = 0

        async def counted() -> str:
            nonlocal calls
            calls += 1
            return "ok"

        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(counted)
        assert calls == 0
        assert exc_info.value.retry_after == pytest.approx(30.0)

    async def test_success_resets_failure_count(self, breaker):
        for _ in range(2):
            with pytest.raises(ConnectionError):
                await breaker.call(fail)
        await breaker.call(succeed)

        assert breaker.failure_count == 0
        assert breaker.state == CircuitState.CLOSED

    async def test_half_open_success_closes(self, breaker, clock):
        await self.trip(breaker)
        clock.advance(30.1)

        assert breaker.can_execute()
        assert await breaker.call(succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    async def test_half_open_failure_reopens(self, breaker, clock):
        await self.trip(breaker)
        clock.advance(31)

        with pytest.raises(ConnectionError):
            await breaker.call(fail)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.call(succeed)

    async def test_half_open_admits_limited_trials(self, breaker, clock):
        await self.trip(breaker)
        clock.advance(31)
        gate = asyncio.Event()
        started = 0

        async def slow_trial() -> str:
            nonlocal started
            started += 1
            await gate.wait()
            return "ok"

        trials = [asyncio.create_task(breaker.call(slow_trial)) for _ in range(2)]
        for _ in range(5):
            await asyncio.sleep(0)
        assert started == 2
        assert breaker.state == CircuitState.HALF_OPEN
        assert not breaker.can_execute()

        with pytest.raises(CircuitOpenError):
            await breaker.call(slow_trial)
        assert started == 2

        gate.set()
        assert await asyncio.gather(*trials) == ["ok", "ok"]
        assert breaker.state == CircuitState.CLOSED

    async def test_cancelled_trial_releases_its_slot(self, breaker, clock):
        await self.trip(breaker)
        clock.advance(31)
        gate = asyncio.Event()

        async def slow_trial() -> str:
            await gate.wait()
            return "ok"

        trials = [asyncio.create_task(breaker.call(slow_trial)) for _ in range(2)]
        for _ in range(5):
            await asyncio.sleep(0)
        assert not breaker.can_execute()

        trials[0].cancel()
        with pytest.raises(asyncio.CancelledError):
            await trials[0]

        assert breaker.can_execute()
        assert await breaker.call(succeed) == "ok"
        assert breaker.state == CircuitState.CLOSED

        gate.set()
        assert await trials[1] == "ok"

    async def test_concurrent_failures_open_once(self, breaker, caplog):
        caplog.set_level(logging.WARNING, logger="clipnote.services.resilience.circuit_breaker")
        gate = asyncio.Event()

        async def fail_later() -> None:
            await gate.wait()
            raise ConnectionError("down")

        calls = [asyncio.create_task(breaker.call(fail_later)) for _ in range(5)]
        for _ in range(5):
            await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*calls, return_exceptions=True)

        assert all(isinstance(r, ConnectionError) for r in results)
        assert breaker.state == CircuitState.OPEN
        assert breaker.get_stats()["total_failures"] == 5
        assert breaker.get_stats()["retry_after"] == pytest.approx(30.0)
        opened = [r for r in caplog.records if "opened after" in r.getMessage()]
        assert len(opened) == 1

    async def test_reset(self, breaker):
        await self.trip(breaker)
        await breaker.reset()

        assert breaker.state == CircuitState.CLOSED
        assert await breaker.call(succeed) == "ok"

    async def test_stats(self, breaker):
        await self.trip(breaker)
        with pytest.raises(CircuitOpenError):
            await breaker.call(succeed)

        stats = breaker.get_stats()
        assert stats["state"] == "open"
        assert stats["total_failures"] == 3
        assert stats["total_rejections"] == 1


class TestCircuitBreakerRegistry:
    def test_one_breaker_per_name(self):
        registry = CircuitBreakerRegistry()

        assert registry.get("Groq") is registry.get("Groq")
        assert registry.get("Groq") is not registry.get("Claude")
        assert registry.names() == ["Groq", "Claude"]

    async def test_reset(self, clock):
        registry = CircuitBreakerRegistry(CircuitBreakerConfig(failure_threshold=1), clock=clock)
        with pytest.raises(ConnectionError):
            await registry.get("Groq").call(fail)

        assert registry.stats()["Groq"]["state"] == "open"
        assert await registry.reset("Groq")
        assert registry.get("Groq").state == CircuitState.CLOSED
        assert not await registry.reset("missing")


# ═══════════════════════════════════════════════════════════════════════════
# Timeouts, races, cancellation
# ═══════════════════════════════════════════════════════════════════════════


class TestRunWithTimeout:
    async def test_returns_result_in_time(self):
        assert await run_with_timeout(succeed(), 1.0) == "ok"

    async def test_timer_wins(self):
        cancelled = False

        async def slow() -> str:
            nonlocal cancelled
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled = True
                raise
            return "late"

        with pytest.raises(OperationTimeoutError, match="too slow") as exc_info:
            await run_with_timeout(slow(), 0.01, "too slow")

        assert exc_info.value.timeout == 0.01
        assert cancelled

    async def test_operation_timeout_error_propagates_unchanged(self):
        async def raises_timeout() -> None:
            raise TimeoutError("upstream timed out")

        with pytest.raises(TimeoutError, match="upstream timed out") as exc_info:
            await run_with_timeout(raises_timeout(), 1.0)
        assert not isinstance(exc_info.value, OperationTimeoutError)

    async def test_no_timeout(self):
        assert await run_with_timeout(succeed(), None) == "ok"


class TestFirstSuccess:
    async def test_fastest_success_wins_and_losers_are_cancelled(self):
        slow_cancelled = False

        async def slow() -> str:
            nonlocal slow_cancelled
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                slow_cancelled = True
                raise
            return "slow"

        async def fast() -> str:
            await asyncio.sleep(0.01)
            return "fast"

        assert await first_success([slow, fast]) == "fast"
        assert slow_cancelled

    async def test_failures_do_not_stop_the_race(self):
        async def late() -> str:
            await asyncio.sleep(0.01)
            return "late"

        assert await first_success([fail, late]) == "late"

    async def test_all_failures_are_aggregated(self):
        async def boom() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RaceError) as exc_info:
            await first_success([fail, boom], labels=["a", "b"])

        assert [label for label, _ in exc_info.value.errors] == ["a", "b"]
        assert "a: down" in str(exc_info.value)

    async def test_overall_timeout(self):
        async def never() -> None:
            await asyncio.sleep(10)

        with pytest.raises(OperationTimeoutError):
            await first_success([never], timeout=0.01)

    async def test_requires_operations(self):
        with pytest.raises(ValueError):
            await first_success([])


class TestRaceEndpoints:
    @respx.mock
    async def test_first_valid_response_wins(self):
        respx.get("https://a.example/x").mock(return_value=httpx.Response(500))
        respx.get("https://b.example/x").mock(return_value=httpx.Response(200, json={"ok": True}))

        async with httpx.AsyncClient() as client:
            response = await race_endpoints(
                client, ["https://a.example/x", "https://b.example/x"], timeout=5.0
            )

        assert response.json() == {"ok": True}

    @respx.mock
    async def test_validator_rejects_error_payload(self):
        respx.get("https://a.example/x").mock(
            return_value=httpx.Response(200, json={"error": "nope"})
        )

        def validate(response: httpx.Response) -> None:
            if "error" in response.json():
                raise ValueError(response.json()["error"])

        async with httpx.AsyncClient() as client:
            with pytest.raises(RaceError, match="nope"):
                await race_endpoints(client, ["https://a.example/x"], validate=validate)


class TestCancellationRegistry:
    async def test_cancel_running_operation(self):
        registry = CancellationRegistry()
        started = asyncio.Event()

        async def slow() -> str:
            started.set()
            await asyncio.sleep(10)
            return "done"

        task = asyncio.create_task(registry.run("op-1", slow()))
        await started.wait()

        assert registry.active() == ["op-1"]
        assert registry.cancel("op-1")

        with pytest.raises(OperationCancelledError) as exc_info:
            await task
        assert exc_info.value.operation_id == "op-1"
        assert registry.active() == []

    async def test_cancel_unknown_operation(self):
        assert not CancellationRegistry().cancel("missing")

    async def test_duplicate_id_rejected(self):
        registry = CancellationRegistry()
        started = asyncio.Event()

        async def slow() -> None:
            started.set()
            await asyncio.sleep(10)

        task = asyncio.create_task(registry.run("op", slow()))
        await started.wait()

        second = succeed()
        with pytest.raises(ValueError):
            await registry.run("op", second)
        assert inspect.getcoroutinestate(second) == inspect.CORO_CLOSED

        registry.cancel("op")
        with pytest.raises(OperationCancelledError):
            await task
