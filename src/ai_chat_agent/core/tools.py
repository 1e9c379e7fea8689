"""Execution of tools requested by the reply generator."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from ..models.tools import ToolKind, ToolRequest, ToolResult
from ..utils.async_helpers import with_timeout
from ..utils.security import SecretRedactor

if TYPE_CHECKING:
    from ..interfaces.services import CodeRunner, WebFetcher, WebSearcher

log = structlog.get_logger()


class ToolExecutor:
    """Runs one tool request and always returns a ToolResult.

    Unknown, unavailable, and failing tools are reported as failed results so
    the generator can adapt; nothing raised by a tool escapes.
    """

    def __init__(
        self,
        code_runner: CodeRunner | None = None,
        searcher: WebSearcher | None = None,
        fetcher: WebFetcher | None = None,
        redactor: SecretRedactor | None = None,
        timeout: float | None = None,
    ) -> None:
        self._code_runner = code_runner
        self._searcher = searcher
        self._fetcher = fetcher
        self._redactor = redactor or SecretRedactor()
        self._timeout = timeout

    @property
    def available(self) -> list[ToolKind]:
        """Tool kinds that have an implementation configured."""
        kinds = []
        if self._code_runner is not None:
            kinds.append(ToolKind.PYTHON)
        if self._searcher is not None:
            kinds.append(ToolKind.WEB_SEARCH)
        if self._fetcher is not None:
            kinds.append(ToolKind.WEB_FETCH)
        return kinds

    async def execute(self, request: ToolRequest) -> ToolResult:
        """Execute a tool request.

        Args:
            request: Parsed tool request from model output

        Returns:
            Result with secrets redacted from output and error text
        """
        argument = request.argument
        log.info("tool_execution_started", tool=request.name, kind=request.kind.value)

        if request.kind is ToolKind.UNKNOWN:
            known = ", ".join(kind.value for kind in ToolKind if kind is not ToolKind.UNKNOWN)
            result = ToolResult.failure(f"Unknown tool '{request.name}'. Available tools: {known}")
        elif not argument.strip():
            result = ToolResult.failure(f"No input provided for tool '{request.kind.value}'")
        else:
            try:
                result = await self._run(request.kind, argument)
            except Exception as e:
                log.warning("tool_execution_error", tool=request.kind.value, error=str(e))
                result = ToolResult.failure(f"{type(e).__name__}: {e}")

        result = self._redact(result)
        log.info(
            "tool_execution_finished",
            tool=request.kind.value,
            success=result.success,
            output_chars=len(result.output),
        )
        return result

    async def _run(self, kind: ToolKind, argument: str) -> ToolResult:
        if self._timeout is None:
            return await self._dispatch(kind, argument)
        return await with_timeout(
            self._dispatch(kind, argument),
            self._timeout,
            error_message=f"Tool '{kind.value}' timed out after {self._timeout}s",
        )

    async def _dispatch(self, kind: ToolKind, argument: str) -> ToolResult:
        if kind is ToolKind.PYTHON:
            if self._code_runner is None:
                return ToolResult.failure("Code execution is not available")
            return await self._code_runner.run(argument)
        elif kind is ToolKind.WEB_SEARCH:
            if self._searcher is None:
                return ToolResult.failure("Web search is not available")
            return await self._searcher.search(argument)
        elif kind is ToolKind.WEB_FETCH:
            if self._fetcher is None:
                return ToolResult.failure("Web fetch is not available")
            return await self._fetcher.fetch(argument)
        return ToolResult.failure(f"Unsupported tool '{kind.value}'")

    def _redact(self, result: ToolResult) -> ToolResult:
        if not (
            self._redactor.has_secrets(result.output)
            or self._redactor.has_secrets(result.error or "")
        ):
            return result
        log.warning("tool_output_redacted", success=result.success)
        return ToolResult(
            success=result.success,
            output=self._redactor.redact(result.output),
            error=self._redactor.redact(result.error) if result.error else result.error,
        )
