"""Tests for async helper utilities."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from ai_chat_agent.utils.async_helpers import (
    AgentError,
    OracleError,
    RateLimitError,
    StorageError,
    TaskGroup,
    TimeoutError,
    ToolError,
    api_retry,
    create_retry,
    with_timeout,
)

fast_retry = create_retry(max_attempts=3, min_wait=0.01, max_wait=0.02)


class TestCustomExceptions:
    """Test custom exception classes."""

    @pytest.mark.parametrize("exc_type", [OracleError, ToolError, StorageError, TimeoutError])
    def test_subclasses_agent_error(self, exc_type: type[AgentError]) -> None:
        """Test that every agent error shares the base class."""
        error = exc_type("boom")
        assert isinstance(error, AgentError)
        assert str(error) == "boom"

    def test_rate_limit_error_with_retry_after(self) -> None:
        """Test RateLimitError with retry_after."""
        error = RateLimitError("Rate limited", retry_after=60)
        assert error.retry_after == 60
        assert str(error) == "Rate limited"

    def test_rate_limit_error_without_retry_after(self) -> None:
        """Test RateLimitError without retry_after."""
        assert RateLimitError("Rate limited").retry_after is None

    def test_timeout_error_is_not_builtin(self) -> None:
        """Test that the agent TimeoutError is distinct from the builtin."""
        assert not issubclass(TimeoutError, asyncio.TimeoutError)


class TestRetryDecorator:
    """Test retry decorator functionality."""

    async def test_api_retry_succeeds_first_try(self) -> None:
        """Test that successful calls don't trigger retry."""
        call_count = 0

        @api_retry
        async def successful_call() -> str:
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_call() == "success"
        assert call_count == 1

    async def test_retries_on_timeout(self) -> None:
        """Test retry on httpx.TimeoutException."""
        call_count = 0

        @fast_retry
        async def flaky_call() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise httpx.ReadTimeout("timeout")
            return "success"

        assert await flaky_call() == "success"
        assert call_count == 3

    async def test_retries_on_network_error(self) -> None:
        """Test retry on httpx.NetworkError."""
        call_count = 0

        @fast_retry
        async def flaky_call() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise httpx.ConnectError("connection refused")
            return "success"

        assert await flaky_call() == "success"
        assert call_count == 2

    async def test_gives_up_after_max_attempts(self) -> None:
        """Test that the last error is re-raised after the final attempt."""
        call_count = 0

        @fast_retry
        async def always_fails() -> str:
            nonlocal call_count
            call_count += 1
            raise httpx.ReadTimeout("always timeout")

        with pytest.raises(httpx.ReadTimeout):
            await always_fails()
        assert call_count == 3

    async def test_api_retry_does_not_retry_other_exceptions(self) -> None:
        """Test that non-retryable exceptions are not retried."""
        call_count = 0

        @api_retry
        async def raises_value_error() -> str:
            nonlocal call_count
            call_count += 1
            raise ValueError("not retryable")

        with pytest.raises(ValueError):
            await raises_value_error()

        assert call_count == 1

    async def test_create_retry_custom_exceptions(self) -> None:
        """Test creating a retry decorator for other exception types."""
        call_count = 0

        @create_retry(max_attempts=2, min_wait=0.01, max_wait=0.1, retry_on=(StorageError,))
        async def custom_flaky() -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 2:
                raise StorageError("database is locked")
            return "success"

        assert await custom_flaky() == "success"
        assert call_count == 2


class TestWithTimeout:
    """Test the with_timeout helper."""

    async def test_succeeds(self) -> None:
        """Test with_timeout when operation completes in time."""

        async def fast_operation() -> str:
            await asyncio.sleep(0.01)
            return "done"

        assert await with_timeout(fast_operation(), timeout=1.0) == "done"

    async def test_times_out(self) -> None:
        """Test with_timeout when operation exceeds timeout."""

        async def slow_operation() -> str:
            await asyncio.sleep(10)
            return "done"

        with pytest.raises(TimeoutError, match="timed out after 0.01s"):
            await with_timeout(slow_operation(), timeout=0.01)

    async def test_custom_message(self) -> None:
        """Test with_timeout with custom error message."""

        async def slow_operation() -> str:
            await asyncio.sleep(10)
            return "done"

        with pytest.raises(TimeoutError, match="vision took too long"):
            await with_timeout(slow_operation(), 0.01, error_message="vision took too long")


class TestTaskGroup:
    """Test tracked background tasks."""

    async def test_tasks_removed_when_done(self) -> None:
        """Test that finished tasks are no longer tracked."""
        group = TaskGroup()

        task = group.spawn(asyncio.sleep(0), name="noop")
        assert len(group) == 1

        await task
        await asyncio.sleep(0)
        assert len(group) == 0

    async def test_failure_does_not_propagate(self) -> None:
        """Test that a failing task is logged and dropped."""
        group = TaskGroup()

        async def fails() -> None:
            raise RuntimeError("enrichment exploded")

        group.spawn(fails(), name="enrich:m1")
        await group.wait()
        await asyncio.sleep(0)

        assert len(group) == 0

    async def test_cancel_all(self) -> None:
        """Test that cancel_all stops long-running tasks."""
        group = TaskGroup()
        task = group.spawn(asyncio.sleep(10))

        await group.cancel_all()

        assert task.cancelled()
        assert len(group) == 0

    async def test_wait_with_nothing_tracked(self) -> None:
        """Test that waiting on an empty group returns immediately."""
        await TaskGroup().wait(timeout=0.01)
