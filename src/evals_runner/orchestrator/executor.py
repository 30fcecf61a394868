"""Task executors: in-process and containerized strategies."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Protocol

from evals_runner.config import ContainerSettings
from evals_runner.orchestrator.backend.base import TaskRunner, UnitTestRunner
from evals_runner.orchestrator.backend.shell import (
    CommandOutcome,
    OutcomeKind,
    ShellFn,
    run_shell,
)
from evals_runner.orchestrator.errors import ContainerRunError
from evals_runner.orchestrator.liveness import LivenessRegistry, SleepFn
from evals_runner.orchestrator.models import (
    EvalEventName,
    RunResult,
    RunView,
    TaskExecution,
    TaskOutcomeEvent,
    TaskView,
)
from evals_runner.orchestrator.run_logger import RunLogger
from evals_runner.orchestrator.workspace import get_tag
from evals_runner.storage.common import utc_now

LoggerFactory = Callable[..., RunLogger]

CONTAINER_LOG_DIR = Path("/var/log/evals")


class TaskStore(Protocol):
    """Subset of the repository used by executors and the orchestrator."""

    def find_run(self, run_id: int) -> RunView: ...

    def find_task(self, task_id: int) -> TaskView: ...

    def get_tasks(self, run_id: int) -> list[TaskView]: ...

    def update_task(
        self,
        task_id: int,
        *,
        passed: bool,
        started_at: datetime | None = None,
    ) -> TaskView: ...

    def finish_run(self, run_id: int) -> RunResult: ...


class TaskExecutor(Protocol):
    async def execute(self, task_id: int, logger: RunLogger | None = None) -> TaskExecution:
        """Process one task; raise when it could not be processed."""


class InProcessTaskExecutor:
    """Run the agent and unit tests for one task in this process."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: TaskStore,
        liveness: LivenessRegistry,
        task_runner: TaskRunner,
        unit_test_runner: UnitTestRunner,
        log_root: Path,
        logger_factory: LoggerFactory = RunLogger,
    ) -> None:
        self.store = store
        self.liveness = liveness
        self.task_runner = task_runner
        self.unit_test_runner = unit_test_runner
        self.log_root = log_root
        self._logger_factory = logger_factory

    async def execute(self, task_id: int, logger: RunLogger | None = None) -> TaskExecution:
        task = await asyncio.to_thread(self.store.find_task, task_id)
        run = await asyncio.to_thread(self.store.find_run, task.run_id)

        owned_logger: RunLogger | None = None
        if logger is None:
            owned_logger = self._logger_factory(
                log_dir=self.log_root / "runs" / str(run.id),
                filename=f"{task.language}-{task.exercise}.log",
                tag=get_tag("runTask"),
            )
            logger = owned_logger

        async def publish(event: TaskOutcomeEvent) -> None:
            await self.liveness.publish(run.id, event)

        try:
            async with self.liveness.registered(run.id, task.id):
                logger.info(f"running task {task.id} ({task.label})...")
                started_at = utc_now()
                await self.task_runner.run(run=run, task=task, publish=publish, logger=logger)

                logger.info(f"testing task {task.id} ({task.label})...")
                passed = await self.unit_test_runner.run(run=run, task=task)
                logger.info(f"task {task.id} ({task.label}) -> {str(passed).lower()}")

                await asyncio.to_thread(
                    self.store.update_task,
                    task.id,
                    passed=passed,
                    started_at=started_at,
                )
                await publish(
                    TaskOutcomeEvent(
                        event_name=EvalEventName.EVAL_PASS if passed else EvalEventName.EVAL_FAIL,
                        task_id=task.id,
                    ),
                )
        finally:
            if owned_logger is not None:
                owned_logger.close()

        return TaskExecution(task_id=task.id, attempts=1, passed=passed, outcome_recorded=True)


class ContainerTaskExecutor:
    """Run one task in a fresh container that re-enters this CLI with ``--taskId``.

    The container records the outcome itself; after a clean exit the task row
    is re-read so callers learn whether an outcome was actually persisted.
    ``db_path`` is the store location as seen inside the task container; it
    must live under the shared log mount.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: TaskStore,
        settings: ContainerSettings,
        host_log_dir: Path,
        db_path: Path | None = None,
        shell: ShellFn = run_shell,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.store = store
        self.settings = settings
        self.host_log_dir = host_log_dir
        self.db_path = db_path
        self._shell = shell
        self._sleep = sleep

    def cli_invocation(self, task_id: int) -> str:
        return f"{self.settings.cli_command} --taskId {task_id}"

    def build_command(self, task_id: int, attempt: int) -> str:
        parts = [
            "docker run --rm",
            f"--network {self.settings.network}",
            "-v /var/run/docker.sock:/var/run/docker.sock",
            f"-v {self.host_log_dir}:{CONTAINER_LOG_DIR}",
            "-e HOST_EXECUTION_METHOD=docker",
        ]
        if self.db_path is not None:
            parts.append(f"-e EVALS_DB_PATH={self.db_path}")
        parts.extend(
            [
                f"--name evals-task-{task_id}.{attempt}",
                self.settings.image,
                f'sh -c "{self.cli_invocation(task_id)}"',
            ],
        )
        return " ".join(parts)

    def retry_delay(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based), doubling each time."""

        return min(
            self.settings.retry_max_seconds,
            self.settings.retry_base_seconds * (2 ** max(retry_number - 1, 0)),
        )

    async def execute(
        self,
        task_id: int,
        logger: RunLogger | None = None,
        *,
        max_retries: int | None = None,
    ) -> TaskExecution:
        if logger is None:
            raise ValueError("Container execution requires the run logger.")
        retries = self.settings.max_retries if max_retries is None else max_retries
        total = retries + 1
        logger.info(self.cli_invocation(task_id))

        last_outcome: CommandOutcome | None = None
        for attempt in range(total):
            if attempt == 0:
                logger.info(f"executing container command (attempt 1/{total})")
            else:
                logger.info(f"retrying container command (attempt {attempt + 1}/{total})")

            outcome = await self._run_attempt(self.build_command(task_id, attempt))
            if outcome.ok:
                logger.info("container process completed with exit code: 0")
                return await self._report(task_id=task_id, attempts=attempt + 1, logger=logger)

            last_outcome = outcome
            logger.error(
                f"container process failed with {outcome.describe()} "
                f"(attempt {attempt + 1}/{total})",
            )
            if attempt + 1 < total:
                delay = self.retry_delay(attempt + 1)
                logger.info(f"retrying in {delay * 1000:.0f}ms (attempt {attempt + 2}/{total})")
                await self._sleep(delay)

        logger.error(f"all {total} attempts failed, giving up")
        raise ContainerRunError(
            f"Task {task_id} failed in container after {total} attempts "
            f"({last_outcome.describe() if last_outcome else 'no attempts'}).",
            attempts=total,
            outcome=last_outcome,
        )

    async def _run_attempt(self, command: str) -> CommandOutcome:
        try:
            return await self._shell(command, capture_output=False)
        except Exception as error:  # noqa: BLE001
            return CommandOutcome(kind=OutcomeKind.SPAWN_FAILED, error=str(error))

    async def _report(self, *, task_id: int, attempts: int, logger: RunLogger) -> TaskExecution:
        task = await asyncio.to_thread(self.store.find_task, task_id)
        recorded = task.finished_at is not None
        if not recorded:
            logger.warn(f"task {task_id} container exited cleanly but recorded no outcome")
        return TaskExecution(
            task_id=task_id,
            attempts=attempts,
            passed=task.passed,
            outcome_recorded=recorded,
        )
