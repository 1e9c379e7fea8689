"""Safe subprocess wrapper for running model-written Python snippets.

Code is written to a private temporary directory and executed with an
isolated interpreter:
- Never uses shell=True
- Runs with ``-I`` (no user site, no environment-driven imports)
- Enforces a hard timeout
- Starts from a scrubbed environment so agent credentials never leak in
"""

from __future__ import annotations

import asyncio
import os
import shutil
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path

import structlog

from ai_chat_agent.utils.async_helpers import ToolError

log = structlog.get_logger()


class PythonNotFoundError(ToolError):
    """Raised when no Python interpreter can be located."""


class CommandTimeoutError(ToolError):
    """Raised when a command times out."""


@dataclass
class CommandResult:
    """Result of a subprocess execution."""

    stdout: str
    stderr: str
    return_code: int
    command: list[str]

    @property
    def success(self) -> bool:
        """Return True if the command succeeded."""
        return self.return_code == 0


# Variables passed through to the child; everything else is dropped
_PASSTHROUGH_ENV = ("PATH", "LANG", "LC_ALL", "SYSTEMROOT", "TZ")


class SafePythonRunner:
    """Executes short Python programs in a throwaway interpreter.

    Example:
        runner = SafePythonRunner(timeout=5.0)
        result = await runner.run("print(2 ** 10)")
        print(result.stdout)  # "1024\\n"
    """

    DEFAULT_TIMEOUT = 5.0

    def __init__(
        self,
        python_path: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        """Initialize the runner.

        Args:
            python_path: Interpreter to use. Defaults to python3 on PATH,
                then the running interpreter.
            timeout: Wall-clock limit per execution in seconds.

        Raises:
            PythonNotFoundError: If no interpreter is found.
        """
        resolved = python_path or shutil.which("python3") or sys.executable
        if not resolved:
            raise PythonNotFoundError("No Python interpreter available for code execution")

        self._python_path: str = resolved
        self._timeout = timeout

    @property
    def timeout(self) -> float:
        return self._timeout

    def _child_env(self) -> dict[str, str]:
        env = {key: os.environ[key] for key in _PASSTHROUGH_ENV if key in os.environ}
        env["PYTHONIOENCODING"] = "utf-8"
        env["PYTHONDONTWRITEBYTECODE"] = "1"
        return env

    async def run(self, code: str, timeout: float | None = None) -> CommandResult:
        """Run a Python program and capture its output.

        Args:
            code: Source code to execute.
            timeout: Override for the configured timeout.

        Returns:
            CommandResult with stdout, stderr, and return code.

        Raises:
            CommandTimeoutError: If the program exceeds the timeout.
        """
        effective_timeout = timeout or self._timeout

        with tempfile.TemporaryDirectory(prefix="ai-chat-agent-") as workdir:
            script = Path(workdir) / "snippet.py"
            script.write_text(code, encoding="utf-8")
            cmd = [self._python_path, "-I", str(script)]

            log.debug("executing_python_snippet", chars=len(code), timeout=effective_timeout)

            def run_sync() -> subprocess.CompletedProcess[str]:
                return subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    timeout=effective_timeout,
                    cwd=workdir,
                    env=self._child_env(),
                    stdin=subprocess.DEVNULL,
                    shell=False,
                )

            try:
                proc = await asyncio.wait_for(
                    asyncio.to_thread(run_sync),
                    timeout=effective_timeout + 5,
                )
            except subprocess.TimeoutExpired as e:
                log.warning("python_snippet_timeout", timeout=effective_timeout)
                raise CommandTimeoutError(
                    f"Execution timed out after {effective_timeout}s"
                ) from e
            except TimeoutError as e:
                log.warning("python_snippet_timeout", timeout=effective_timeout)
                raise CommandTimeoutError(
                    f"Execution timed out after {effective_timeout}s"
                ) from e

        return CommandResult(
            stdout=proc.stdout,
            stderr=proc.stderr,
            return_code=proc.returncode,
            command=cmd,
        )
