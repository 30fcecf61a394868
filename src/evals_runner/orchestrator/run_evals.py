"""Run-level orchestration: drive every unfinished task of one run to completion."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from evals_runner.orchestrator.errors import RunPreconditionError
from evals_runner.orchestrator.executor import LoggerFactory, TaskExecutor, TaskStore
from evals_runner.orchestrator.liveness import Heartbeat, LivenessRegistry
from evals_runner.orchestrator.models import RunResult, RunView, TaskView
from evals_runner.orchestrator.run_logger import RunLogger
from evals_runner.orchestrator.work_queue import BoundedWorkQueue
from evals_runner.orchestrator.workspace import EvalsWorkspace, get_tag

logger = logging.getLogger(__name__)


class RunOrchestrator:
    """Validate a run, fan its tasks out under a concurrency cap and finish it.

    Task units run in-process when the orchestrator runs directly on a host;
    inside a container each unit is delegated to a sibling container instead.
    A failing unit is logged and never aborts its siblings.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        store: TaskStore,
        liveness: LivenessRegistry,
        workspace: EvalsWorkspace,
        in_process_executor: TaskExecutor,
        container_executor: TaskExecutor,
        log_root: Path,
        logger_factory: LoggerFactory = RunLogger,
    ) -> None:
        self.store = store
        self.liveness = liveness
        self.workspace = workspace
        self.in_process_executor = in_process_executor
        self.container_executor = container_executor
        self.log_root = log_root
        self._logger_factory = logger_factory

    async def run(self, run_id: int) -> RunResult:
        run = await asyncio.to_thread(self.store.find_run, run_id)
        if run.is_finished:
            raise RunPreconditionError(f"Run {run_id} already finished.")

        tasks = await asyncio.to_thread(self.store.get_tasks, run_id)
        pending = [task for task in tasks if task.finished_at is None]
        if not pending:
            raise RunPreconditionError(f"Run {run_id} has no tasks.")

        run_logger = self._logger_factory(
            log_dir=self.log_root / "runs" / str(run.id),
            filename="controller.log",
            tag=get_tag("runEvals"),
        )
        heartbeat: Heartbeat | None = None
        try:
            containerized = self.workspace.is_docker_container()
            if not containerized:
                await self.workspace.reset_repo(run)

            heartbeat = await self.liveness.start_heartbeat(run.id)

            executor = self.container_executor if containerized else self.in_process_executor
            run_logger.info(
                f"processing {len(pending)} task(s) of run {run.id} "
                f"with concurrency {run.concurrency}",
            )
            await self._process_tasks(run, pending, executor, run_logger)

            run_logger.info("finishRun")
            result = await asyncio.to_thread(self.store.finish_run, run.id)
            run_logger.info("result ->", result)

            if not containerized:
                await self.workspace.commit_repo_changes(run)
            return result
        finally:
            run_logger.info("cleaning up")
            await self._cleanup(run.id, heartbeat, run_logger)

    async def _process_tasks(
        self,
        run: RunView,
        tasks: list[TaskView],
        executor: TaskExecutor,
        run_logger: RunLogger,
    ) -> None:
        queue = BoundedWorkQueue(concurrency=run.concurrency)

        def unit_for(task: TaskView):  # noqa: ANN202
            async def unit() -> None:
                try:
                    await executor.execute(task.id, run_logger)
                except Exception as error:  # noqa: BLE001
                    run_logger.error("error processing task", error)

            return unit

        queue.add_all(unit_for(task) for task in tasks)
        await queue.on_idle()

    async def _cleanup(
        self,
        run_id: int,
        heartbeat: Heartbeat | None,
        run_logger: RunLogger,
    ) -> None:
        # The key is shared by every runner of this run; only delete one we set.
        if heartbeat is not None:
            try:
                await self.liveness.stop_heartbeat(run_id, heartbeat)
            except Exception:  # noqa: BLE001
                logger.exception("Failed to stop heartbeat for run %s", run_id)
        try:
            run_logger.close()
        except Exception:  # noqa: BLE001
            logger.exception("Failed to close run logger for run %s", run_id)
