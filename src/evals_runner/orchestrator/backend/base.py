"""Collaborator interfaces used by task executors."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Protocol

from evals_runner.orchestrator.models import RunView, TaskOutcomeEvent, TaskView
from evals_runner.orchestrator.run_logger import RunLogger

PublishFn = Callable[[TaskOutcomeEvent], Awaitable[None]]


class TaskRunner(Protocol):
    """Drives the agent under evaluation through one exercise."""

    async def run(
        self,
        *,
        run: RunView,
        task: TaskView,
        publish: PublishFn,
        logger: RunLogger,
    ) -> None:
        """Run the agent; raise on failure."""


class UnitTestRunner(Protocol):
    """Decides whether the agent's solution passes the exercise tests."""

    async def run(self, *, run: RunView, task: TaskView) -> bool:
        """Return pass/fail."""
