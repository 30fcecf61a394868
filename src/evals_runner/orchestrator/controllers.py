"""Controllers for evals CLI commands."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from redis.asyncio import Redis

from evals_runner.config import Settings
from evals_runner.orchestrator.backend import (
    CliAgentTaskRunner,
    ExerciseUnitTestRunner,
)
from evals_runner.orchestrator.backend.unit_tests import UNIT_TEST_COMMANDS
from evals_runner.orchestrator.executor import (
    CONTAINER_LOG_DIR,
    ContainerTaskExecutor,
    InProcessTaskExecutor,
)
from evals_runner.orchestrator.liveness import LivenessRegistry, RedisClientFactory
from evals_runner.orchestrator.models import RunCreate, RunResult, TaskExecution
from evals_runner.orchestrator.repository import EvalRepository
from evals_runner.orchestrator.run_evals import RunOrchestrator
from evals_runner.orchestrator.workspace import EvalsWorkspace, is_docker_container

RedisFactory = Callable[[str], Redis]


@dataclass(slots=True)
class InitDbCommand:
    """CLI input for schema migration."""

    db_path: Path | None


@dataclass(slots=True)
class CreateRunCommand:
    """CLI input for registering a run and its exercises."""

    db_path: Path | None
    model: str
    exercises: tuple[str, ...]
    languages: tuple[str, ...]
    concurrency: int
    description: str | None


@dataclass(slots=True)
class ListRunsCommand:
    """CLI input for run listing."""

    db_path: Path | None
    limit: int


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    run_id: int


@dataclass(slots=True)
class RunEvalsCommand:
    """CLI input for orchestrating a whole run."""

    db_path: Path | None
    run_id: int


@dataclass(slots=True)
class RunTaskCommand:
    """CLI input for processing one task in this process."""

    db_path: Path | None
    task_id: int


class EvalsCliController:
    """Coordinates storage, liveness and orchestration for CLI operations."""

    def __init__(self, *, redis_client_factory: RedisFactory | None = None) -> None:
        self._redis_client_factory = redis_client_factory

    def init_db(self, command: InitDbCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings):
            pass
        return [f"Database ready: {settings.db_path}"]

    def create_run(self, command: CreateRunCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        exercises = _parse_exercises(command.exercises)
        if not exercises:
            exercises = discover_exercises(
                settings.paths.repo_dir,
                languages=command.languages,
            )
        if not exercises:
            raise ValueError(
                "No exercises given and none found under "
                f"{settings.paths.repo_dir}; pass --exercise language/name.",
            )

        with _repository(settings) as repository:
            run = repository.create_run(
                RunCreate(
                    model=command.model,
                    exercises=exercises,
                    concurrency=command.concurrency,
                    description=command.description,
                ),
            )
            tasks = repository.get_tasks(run.id)

        return [
            "Run created: "
            f"run_id={run.id} model={run.model} tasks={len(tasks)} "
            f"concurrency={run.concurrency}",
        ]

    def list_runs(self, command: ListRunsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            runs = repository.list_runs(limit=command.limit)

        if not runs:
            return ["No runs found."]
        return [
            f"{run.id} status={run.status.value} model={run.model} "
            f"concurrency={run.concurrency} finished={'yes' if run.is_finished else 'no'} "
            f"created_at={run.created_at.isoformat()}"
            for run in runs
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            repository.find_run(command.run_id)
            tasks = repository.get_tasks(command.run_id)

        if not tasks:
            return [f"Run {command.run_id} has no tasks."]
        lines = []
        for task in tasks:
            outcome = "pending" if task.passed is None else ("passed" if task.passed else "failed")
            lines.append(f"{task.id} {task.label} {outcome}")
        return lines

    def run_evals(self, command: RunEvalsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        containerized = is_docker_container()
        if containerized:
            settings.validate_for_container()
        else:
            settings.validate_for_agent()
        with _repository(settings) as repository:
            result = asyncio.run(
                self._run_evals(
                    settings,
                    repository,
                    command.run_id,
                    containerized=containerized,
                ),
            )

        return [
            f"Run {result.run_id} finished: "
            f"passed={result.passed_tasks}/{result.total_tasks} "
            f"success_rate={result.success_rate:.1%}",
        ]

    def run_task(self, command: RunTaskCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        settings.validate()
        settings.validate_for_agent()
        with _repository(settings) as repository:
            execution = asyncio.run(self._run_task(settings, repository, command.task_id))

        return [
            f"Task {execution.task_id} "
            f"{'passed' if execution.passed else 'failed'} "
            f"(attempts={execution.attempts})",
        ]

    async def _run_evals(
        self,
        settings: Settings,
        repository: EvalRepository,
        run_id: int,
        *,
        containerized: bool,
    ) -> RunResult:
        redis = RedisClientFactory(settings.redis.url, client_factory=self._redis_client_factory)
        try:
            liveness = _liveness(settings, redis)
            orchestrator = RunOrchestrator(
                store=repository,
                liveness=liveness,
                workspace=EvalsWorkspace(settings.paths.repo_dir),
                in_process_executor=_in_process_executor(settings, repository, liveness),
                container_executor=ContainerTaskExecutor(
                    store=repository,
                    settings=settings.container,
                    host_log_dir=settings.paths.host_log_dir,
                    db_path=(
                        settings.container_db_path(CONTAINER_LOG_DIR) if containerized else None
                    ),
                ),
                log_root=settings.paths.log_root,
            )
            return await orchestrator.run(run_id)
        finally:
            await redis.close()

    async def _run_task(
        self,
        settings: Settings,
        repository: EvalRepository,
        task_id: int,
    ) -> TaskExecution:
        redis = RedisClientFactory(settings.redis.url, client_factory=self._redis_client_factory)
        try:
            liveness = _liveness(settings, redis)
            executor = _in_process_executor(settings, repository, liveness)
            return await executor.execute(task_id)
        finally:
            await redis.close()


def discover_exercises(
    repo_dir: Path,
    *,
    languages: tuple[str, ...] = (),
) -> tuple[tuple[str, str], ...]:
    """Scan ``repo_dir/{language}/{exercise}`` for known languages."""

    wanted = languages or tuple(sorted(UNIT_TEST_COMMANDS))
    found: list[tuple[str, str]] = []
    for language in wanted:
        language_dir = repo_dir / language
        if not language_dir.is_dir():
            continue
        for entry in sorted(language_dir.iterdir()):
            if entry.is_dir() and not entry.name.startswith("."):
                found.append((language, entry.name))
    return tuple(found)


def _parse_exercises(values: tuple[str, ...]) -> tuple[tuple[str, str], ...]:
    parsed: list[tuple[str, str]] = []
    for value in values:
        language, sep, exercise = value.strip().partition("/")
        if not sep or not language or not exercise or "/" in exercise:
            raise ValueError(f"Invalid exercise {value!r}; expected language/name.")
        parsed.append((language, exercise))
    return tuple(parsed)


def _liveness(settings: Settings, redis: RedisClientFactory) -> LivenessRegistry:
    return LivenessRegistry(
        redis.get(),
        timeout_seconds=settings.liveness.timeout_seconds,
    )


def _in_process_executor(
    settings: Settings,
    repository: EvalRepository,
    liveness: LivenessRegistry,
) -> InProcessTaskExecutor:
    return InProcessTaskExecutor(
        store=repository,
        liveness=liveness,
        task_runner=CliAgentTaskRunner(
            repo_dir=settings.paths.repo_dir,
            command_template=settings.runner.agent_command_template,
            timeout_seconds=settings.runner.task_timeout_seconds,
        ),
        unit_test_runner=ExerciseUnitTestRunner(
            repo_dir=settings.paths.repo_dir,
            timeout_seconds=settings.runner.unit_test_timeout_seconds,
        ),
        log_root=settings.paths.log_root,
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[EvalRepository]:
    repository = EvalRepository(settings.db_path)
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
