"""Async utility functions and the agent's exception taxonomy.

This module provides:
- Custom exceptions for error handling
- Retry decorators with exponential backoff
- Timeout wrappers for async operations
- Tracked background tasks whose failures are logged, never lost
"""

from __future__ import annotations

import asyncio
import builtins
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

import httpx
import structlog
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()

P = ParamSpec("P")
T = TypeVar("T")


# =============================================================================
# Custom Exceptions
# =============================================================================


class AgentError(Exception):
    """Base exception for all agent errors."""


class OracleError(AgentError):
    """A language-model call failed or returned something unusable."""


class ToolError(AgentError):
    """A tool could not be executed."""


class StorageError(AgentError):
    """The message store could not be read or written."""


class RateLimitError(AgentError):
    """Rate limit exceeded.

    Attributes:
        retry_after: Number of seconds to wait before retrying, if known.
    """

    def __init__(self, message: str, retry_after: int | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TimeoutError(AgentError):
    """Operation timed out."""


# =============================================================================
# Retry Decorator
# =============================================================================


def _log_retry(retry_state: RetryCallState) -> None:
    """Log retry attempts for debugging."""
    if retry_state.outcome is None:
        return

    exception = retry_state.outcome.exception()
    if exception:
        log.warning(
            "retrying_operation",
            attempt=retry_state.attempt_number,
            exception_type=type(exception).__name__,
            exception_message=str(exception),
            wait_time=retry_state.next_action.sleep if retry_state.next_action else 0,
        )


# Default retry decorator for outbound HTTP calls
api_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=30),
    retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
    before_sleep=_log_retry,
    reraise=True,
)


def create_retry(
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_on: tuple[type[Exception], ...] = (httpx.TimeoutException, httpx.NetworkError),
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Create a customized retry decorator.

    Args:
        max_attempts: Maximum number of attempts.
        min_wait: Minimum wait time between retries (seconds).
        max_wait: Maximum wait time between retries (seconds).
        retry_on: Tuple of exception types to retry on.

    Returns:
        A retry decorator configured with the given parameters.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )


# =============================================================================
# Timeout Utilities
# =============================================================================


async def with_timeout(
    coro: Awaitable[T],
    timeout: float,
    error_message: str | None = None,
) -> T:
    """Execute an awaitable with a timeout.

    Args:
        coro: The coroutine to execute.
        timeout: Timeout in seconds.
        error_message: Custom error message for timeout.

    Returns:
        The result of the coroutine.

    Raises:
        TimeoutError: If the operation times out.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except builtins.TimeoutError as e:
        msg = error_message or f"Operation timed out after {timeout}s"
        log.warning("operation_timeout", timeout=timeout)
        raise TimeoutError(msg) from e


# =============================================================================
# Background Tasks
# =============================================================================


class TaskGroup:
    """Keeps strong references to fire-and-forget tasks.

    Tasks are removed once done. An exception escaping a task is logged
    with the task's name instead of vanishing with the task object.

    Example:
        tasks = TaskGroup()
        tasks.spawn(enrich(message), name="enrich:123")
        ...
        await tasks.cancel_all()
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task[Any]:
        """Schedule a coroutine as a tracked task."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(
                "background_task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def wait(self, timeout: float | None = None) -> None:
        """Wait for the currently tracked tasks to finish."""
        if not self._tasks:
            return
        await asyncio.wait(list(self._tasks), timeout=timeout)

    async def cancel_all(self) -> None:
        """Cancel every tracked task and wait for them to unwind."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
