"""Async subprocess invocation with a tagged outcome."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

logger = logging.getLogger(__name__)

_TERMINATE_GRACE_SECONDS = 2.0


class OutcomeKind(str, Enum):
    """How a subprocess ended."""

    EXITED = "exited"
    SIGNALED = "signaled"
    TIMED_OUT = "timed_out"
    SPAWN_FAILED = "spawn_failed"


@dataclass(slots=True)
class CommandOutcome:
    """Result of one subprocess invocation, classified once at the boundary."""

    kind: OutcomeKind
    exit_code: int | None = None
    signal_number: int | None = None
    error: str | None = None
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.kind == OutcomeKind.EXITED and self.exit_code == 0

    def describe(self) -> str:
        """Short failure description used in log lines."""

        if self.kind == OutcomeKind.EXITED:
            return f"exit code: {self.exit_code}"
        if self.kind == OutcomeKind.SIGNALED:
            return f"signal: {_signal_name(self.signal_number)}"
        if self.kind == OutcomeKind.TIMED_OUT:
            return f"error: {self.error or 'timed out'}"
        return f"error: {self.error or 'failed to start'}"


ShellFn = Callable[..., Awaitable[CommandOutcome]]


async def run_shell(  # noqa: PLR0913
    command: str | Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout_seconds: float | None = None,
    capture_output: bool = True,
) -> CommandOutcome:
    """Run ``command`` (shell string or argv list) and classify how it ended."""

    logger.debug("Running command (cwd=%s): %s", cwd or ".", command)
    merged_env = None if env is None else {**os.environ, **env}
    pipe = asyncio.subprocess.PIPE if capture_output else None
    try:
        if isinstance(command, str):
            process = await asyncio.create_subprocess_shell(
                command,
                cwd=cwd,
                env=merged_env,
                stdout=pipe,
                stderr=pipe,
            )
        else:
            process = await asyncio.create_subprocess_exec(
                *command,
                cwd=cwd,
                env=merged_env,
                stdout=pipe,
                stderr=pipe,
            )
    except OSError as error:
        return CommandOutcome(kind=OutcomeKind.SPAWN_FAILED, error=str(error))

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(),
            timeout=timeout_seconds,
        )
    except TimeoutError:
        await _terminate(process)
        return CommandOutcome(
            kind=OutcomeKind.TIMED_OUT,
            error=f"timed out after {timeout_seconds}s",
        )

    stdout = (stdout_bytes or b"").decode("utf-8", errors="replace")
    stderr = (stderr_bytes or b"").decode("utf-8", errors="replace")
    returncode = process.returncode if process.returncode is not None else -1
    if returncode < 0:
        return CommandOutcome(
            kind=OutcomeKind.SIGNALED,
            signal_number=-returncode,
            stdout=stdout,
            stderr=stderr,
        )
    return CommandOutcome(
        kind=OutcomeKind.EXITED,
        exit_code=returncode,
        stdout=stdout,
        stderr=stderr,
    )


async def _terminate(process: asyncio.subprocess.Process) -> None:
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
    except TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()


def _signal_name(number: int | None) -> str:
    if number is None:
        return "unknown"
    try:
        return signal.Signals(number).name
    except ValueError:
        return str(number)
