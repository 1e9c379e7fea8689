"""Python code execution tool."""

from __future__ import annotations

import structlog

from ...models.tools import ToolResult
from ...utils.safe_subprocess import CommandTimeoutError, SafePythonRunner

log = structlog.get_logger()


class PythonCodeRunner:
    """CodeRunner that executes snippets with SafePythonRunner."""

    def __init__(self, python_path: str | None = None, timeout: float = 5.0) -> None:
        self._runner = SafePythonRunner(python_path=python_path, timeout=timeout)

    async def run(self, code: str) -> ToolResult:
        if not code.strip():
            return ToolResult.failure("Code is required and must be a non-empty string")

        try:
            result = await self._runner.run(code)
        except CommandTimeoutError as e:
            return ToolResult.failure(str(e))

        if result.success:
            log.debug("python_snippet_succeeded", stdout_chars=len(result.stdout))
            return ToolResult(success=True, output=result.stdout)

        log.debug("python_snippet_failed", return_code=result.return_code)
        return ToolResult(
            success=False,
            output=result.stdout,
            error=result.stderr.strip() or f"Process exited with code {result.return_code}",
        )
