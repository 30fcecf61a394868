"""Exception types raised by the evals orchestrator."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from evals_runner.orchestrator.backend.shell import CommandOutcome


class EvalsError(RuntimeError):
    """Base class for harness errors surfaced to the CLI."""


class NotFoundError(EvalsError):
    """A run or task lookup returned nothing."""


class RunPreconditionError(EvalsError):
    """Run cannot be orchestrated (already finished or nothing to do)."""


class WorkspaceError(EvalsError):
    """Git operation on the evals checkout failed."""


class TaskRunnerError(EvalsError):
    """Agent execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class ContainerRunError(EvalsError):
    """All container attempts for a task failed."""

    def __init__(self, message: str, *, attempts: int, outcome: CommandOutcome | None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.outcome = outcome
