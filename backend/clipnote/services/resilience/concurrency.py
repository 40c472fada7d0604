"""
Timeout racing, first-success fan-out and cooperative cancellation.

All three helpers cancel the losing side deterministically: a timed-out
operation is cancelled and awaited before the timeout error is raised, and
the remaining racers are cancelled as soon as one succeeds.
"""

import asyncio
import logging
from functools import partial
from typing import Awaitable, Callable, Sequence, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OperationTimeoutError(TimeoutError):
    """
    Raised when an operation loses the race against its timer.

    Attributes:
        timeout: Limit that was exceeded, in seconds
    """

    retryable = True

    def __init__(self, message: str, timeout: float):
        self.timeout = timeout
        super().__init__(message)


class RaceError(Exception):
    """
    Raised when every racer of first_success() failed.

    Attributes:
        errors: (label, exception) per failed racer, in start order
    """

    def __init__(self, errors: list[tuple[str, BaseException]]):
        self.errors = errors
        joined = "; ".join(f"{label}: {error}" for label, error in errors)
        super().__init__(f"All {len(errors)} operations failed: {joined}")


class OperationCancelledError(Exception):
    """Raised to the caller of CancellationRegistry.run() after cancel()."""

    retryable = False

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Operation '{operation_id}' was cancelled")


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout: float | None,
    message: str | None = None,
) -> T:
    """
    Return the result of `awaitable` unless `timeout` seconds pass first.

    Unlike asyncio.wait_for, a TimeoutError raised *by* the operation is
    propagated as-is and only the timer produces OperationTimeoutError.

    Args:
        awaitable: Coroutine or future to run
        timeout: Seconds (None or <= 0 disables the timer)
        message: Error message used when the timer wins

    Returns:
        Operation result

    Raises:
        OperationTimeoutError: If the timer wins (operation is cancelled)
    """
    if timeout is None or timeout <= 0:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise OperationTimeoutError(
        message or f"Operation exceeded timeout of {timeout * 1000:.0f}ms",
        timeout,
    )


async def first_success(
    factories: Sequence[Callable[[], Awaitable[T]]],
    timeout: float | None = None,
    labels: Sequence[str] | None = None,
) -> T:
    """
    Start every operation concurrently and return the first success.

    Failures are collected while others are still running; the remaining
    operations are cancelled once a winner is found.

    Args:
        factories: Zero-argument coroutine factories
        timeout: Overall limit in seconds (None = no limit)
        labels: Names used in the aggregated error (defaults to indexes)

    Returns:
        Result of the first operation to succeed

    Raises:
        ValueError: If no factories are given
        RaceError: If every operation failed
        OperationTimeoutError: If nothing succeeded before the timeout
    """
    if not factories:
        raise ValueError("first_success() needs at least one operation")

    names = list(labels) if labels else [f"operation-{i}" for i in range(len(factories))]
    tasks = [asyncio.ensure_future(factory()) for factory in factories]
    label_of = dict(zip(tasks, names))

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout if timeout else None
    errors: list[tuple[str, BaseException]] = []
    pending = set(tasks)

    try:
        while pending:
            remaining = None if deadline is None else max(deadline - loop.time(), 0.0)
            done, pending = await asyncio.wait(
                pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED
            )
            if not done:
                raise OperationTimeoutError(
                    f"No operation succeeded within {timeout:.1f}s", timeout
                )

            # Start order keeps the outcome deterministic when several finish together
            for task in (t for t in tasks if t in done):
                if task.cancelled():
                    errors.append((label_of[task], asyncio.CancelledError()))
                    continue
                error = task.exception()
                if error is None:
                    logger.debug(f"Race won by {label_of[task]}")
                    return task.result()
                errors.append((label_of[task], error))

        raise RaceError(errors)

    finally:
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


async def race_endpoints(
    client: httpx.AsyncClient,
    urls: Sequence[str],
    method: str = "GET",
    timeout: float = 10.0,
    validate: Callable[[httpx.Response], None] | None = None,
    **request_kwargs,
) -> httpx.Response:
    """
    Request the same resource from N endpoints and keep the first 2xx.

    Example:
        response = await race_endpoints(
            client,
            ["https://www.youtube.com/oembed?...", "https://noembed.com/embed?..."],
        )

    Args:
        client: Shared HTTP client
        urls: Candidate endpoints
        method: HTTP method
        timeout: Per-request and overall limit in seconds
        validate: Raises if a 2xx response is still unusable (e.g. an
            error payload), so that endpoint loses
        **request_kwargs: Passed to client.request()

    Returns:
        The winning response

    Raises:
        RaceError: If every endpoint failed
        OperationTimeoutError: If none answered in time
    """

    async def fetch(url: str) -> httpx.Response:
        response = await client.request(method, url, timeout=timeout, **request_kwargs)
        response.raise_for_status()
        if validate is not None:
            validate(response)
        return response

    return await first_success(
        [partial(fetch, url) for url in urls],
        timeout=timeout,
        labels=list(urls),
    )


class CancellationRegistry:
    """
    In-flight operations addressable by id.

    Cancelling does not roll back side effects the operation already issued.

    Example:
        registry = CancellationRegistry()
        task = asyncio.create_task(registry.run("op-1", slow_call()))
        registry.cancel("op-1")
        await task  # raises OperationCancelledError
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}
        self._cancelled: set[str] = set()

    async def run(self, operation_id: str, awaitable: Awaitable[T]) -> T:
        """
        Run `awaitable` as a cancellable task registered under `operation_id`.

        Raises:
            ValueError: If the id is already in use (`awaitable` is closed unrun)
            OperationCancelledError: If cancel(operation_id) was called
        """
        if operation_id in self._tasks:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise ValueError(f"Operation '{operation_id}' is already running")

        task = asyncio.ensure_future(awaitable)
        self._tasks[operation_id] = task
        try:
            return await task
        except asyncio.CancelledError:
            if operation_id in self._cancelled:
                raise OperationCancelledError(operation_id) from None
            raise
        finally:
            self._tasks.pop(operation_id, None)
            self._cancelled.discard(operation_id)

    def cancel(self, operation_id: str) -> bool:
        """
        Request cancellation of an in-flight operation.

        Returns:
            False if no such operation is running
        """
        task = self._tasks.get(operation_id)
        if task is None or task.done():
            return False
        self._cancelled.add(operation_id)
        task.cancel()
        logger.info(f"Cancellation requested for operation '{operation_id}'")
        return True

    def active(self) -> list[str]:
        """Ids of operations still running."""
        return [op_id for op_id, task in self._tasks.items() if not task.done()]
