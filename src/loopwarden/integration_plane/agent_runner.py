"""
loopwarden — agent execution collaborator

File: src/loopwarden/integration_plane/agent_runner.py

Purpose
- Define the one shape the orchestration core needs from an agent process:
  prompt and working directory in, ``ExecResult`` out, with an explicit
  timeout.
- Provide ``SubprocessAgentRunner``, which launches a configured command
  line with the prompt piped on stdin.

Functional requirements
- A timeout kills the process and is reported as ``timed_out=True`` rather
  than raised; the caller treats it as a non-productive iteration.
- A missing binary is reported as a failed result with exit code 127.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Protocol

import structlog

MISSING_BINARY_EXIT_CODE: Final[int] = 127


@dataclass(frozen=True, slots=True)
class ExecResult:
    success: bool
    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool
    duration_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "timed_out": self.timed_out,
            "duration_ms": self.duration_ms,
        }


class AgentRunner(Protocol):
    """Runs one agent invocation in ``cwd`` and reports how it ended."""

    async def run(self, prompt: str, *, cwd: Path, timeout_seconds: float) -> ExecResult: ...


class SubprocessAgentRunner:
    """Launch ``command`` per invocation and feed the prompt on stdin."""

    def __init__(
        self,
        command: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        logger: Any | None = None,
    ) -> None:
        if not command:
            raise ValueError("SubprocessAgentRunner requires a non-empty command")
        self._command = tuple(command)
        self._env = dict(env) if env is not None else None
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    async def run(self, prompt: str, *, cwd: Path, timeout_seconds: float) -> ExecResult:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")

        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
                env=self._env,
            )
        except FileNotFoundError as exc:
            self._logger.error("agent_binary_missing", command=self._command[0])
            return ExecResult(
                success=False,
                exit_code=MISSING_BINARY_EXIT_CODE,
                stdout="",
                stderr=str(exc),
                timed_out=False,
                duration_ms=_elapsed_ms(started),
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(prompt.encode("utf-8")), timeout=timeout_seconds
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            duration_ms = _elapsed_ms(started)
            self._logger.warning(
                "agent_timed_out",
                command=self._command[0],
                timeout_seconds=timeout_seconds,
                duration_ms=duration_ms,
            )
            return ExecResult(
                success=False,
                exit_code=proc.returncode if proc.returncode is not None else -1,
                stdout="",
                stderr=f"timed out after {timeout_seconds}s",
                timed_out=True,
                duration_ms=duration_ms,
            )

        exit_code = proc.returncode if proc.returncode is not None else 0
        duration_ms = _elapsed_ms(started)
        self._logger.info(
            "agent_finished", command=self._command[0], exit_code=exit_code, duration_ms=duration_ms
        )
        return ExecResult(
            success=exit_code == 0,
            exit_code=exit_code,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            timed_out=False,
            duration_ms=duration_ms,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


__all__ = ["AgentRunner", "ExecResult", "MISSING_BINARY_EXIT_CODE", "SubprocessAgentRunner"]
