"""Shared test fixtures: in-memory Redis, task store, shell and run logger."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import UTC, datetime

import pytest

from evals_runner.orchestrator.backend.shell import CommandOutcome, OutcomeKind
from evals_runner.orchestrator.errors import NotFoundError
from evals_runner.orchestrator.models import RunResult, RunStatus, RunView, TaskView

_CREATED_AT = datetime(2026, 10, 19, 12, 0, tzinfo=UTC)


class FakeRedis:
    """Records every command; methods named in ``fail_on`` raise ConnectionError."""

    def __init__(self) -> None:
        self.calls: list[tuple[object, ...]] = []
        self.sets: dict[str, set[str]] = {}
        self.values: dict[str, str] = {}
        self.ttls: dict[str, int] = {}
        self.published: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()
        self.closed = False

    def _record(self, name: str, *args: object) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise ConnectionError(f"{name} unavailable")

    def calls_to(self, name: str) -> list[tuple[object, ...]]:
        return [call[1:] for call in self.calls if call[0] == name]

    async def sadd(self, key: str, member: str) -> int:
        self._record("sadd", key, member)
        self.sets.setdefault(key, set()).add(member)
        return 1

    async def srem(self, key: str, member: str) -> int:
        self._record("srem", key, member)
        self.sets.get(key, set()).discard(member)
        return 1

    async def expire(self, key: str, seconds: int) -> bool:
        self._record("expire", key, seconds)
        self.ttls[key] = seconds
        return True

    async def setex(self, key: str, seconds: int, value: str) -> bool:
        self._record("setex", key, seconds, value)
        self.values[key] = value
        self.ttls[key] = seconds
        return True

    async def delete(self, key: str) -> int:
        self._record("delete", key)
        existed = self.values.pop(key, None) is not None
        return int(existed)

    async def publish(self, channel: str, message: str) -> int:
        self._record("publish", channel, message)
        self.published.append((channel, message))
        return 0

    async def aclose(self) -> None:
        self._record("aclose")
        self.closed = True


class RecordingLogger:
    """RunLogger stand-in keeping ``(level, message, args)`` entries."""

    def __init__(self) -> None:
        self.entries: list[tuple[str, str, tuple[object, ...]]] = []
        self.closed = False
        self._lock = threading.Lock()

    def _add(self, level: str, message: str, args: tuple[object, ...]) -> None:
        with self._lock:
            self.entries.append((level, message, args))

    def info(self, message: str, *args: object) -> None:
        self._add("INFO", message, args)

    def log(self, message: str, *args: object) -> None:
        self._add("INFO", message, args)

    def warn(self, message: str, *args: object) -> None:
        self._add("WARN", message, args)

    def error(self, message: str, *args: object) -> None:
        self._add("ERROR", message, args)

    def debug(self, message: str, *args: object) -> None:
        self._add("DEBUG", message, args)

    def close(self) -> None:
        self.closed = True

    def messages(self, level: str | None = None) -> list[str]:
        return [message for lvl, message, _ in self.entries if level is None or lvl == level]


class FakeStore:
    """In-memory task store with the repository's read/write surface."""

    def __init__(self) -> None:
        self.runs: dict[int, RunView] = {}
        self.tasks: dict[int, TaskView] = {}
        self.updates: list[tuple[int, bool]] = []
        self.finish_calls: list[int] = []
        self.finish_error: Exception | None = None
        self.update_error: Exception | None = None
        self.writes: list[tuple[str, int]] = []
        self._lock = threading.Lock()

    def add_run(self, *, run_id: int = 1, concurrency: int = 2, finished: bool = False) -> RunView:
        run = RunView(
            id=run_id,
            model="test-model",
            description=None,
            concurrency=concurrency,
            status=RunStatus.COMPLETED if finished else RunStatus.PENDING,
            task_metrics_id=99 if finished else None,
            created_at=_CREATED_AT,
        )
        self.runs[run_id] = run
        return run

    def add_task(
        self,
        *,
        run_id: int = 1,
        language: str = "python",
        exercise: str = "two-fer",
        passed: bool | None = None,
    ) -> TaskView:
        task_id = len(self.tasks) + 1
        task = TaskView(
            id=task_id,
            run_id=run_id,
            language=language,
            exercise=exercise,
            passed=passed,
            started_at=None,
            finished_at=_CREATED_AT if passed is not None else None,
            created_at=_CREATED_AT,
        )
        self.tasks[task_id] = task
        return task

    def find_run(self, run_id: int) -> RunView:
        if run_id not in self.runs:
            raise NotFoundError(f"Run {run_id} not found.")
        return self.runs[run_id]

    def find_task(self, task_id: int) -> TaskView:
        if task_id not in self.tasks:
            raise NotFoundError(f"Task {task_id} not found.")
        return self.tasks[task_id]

    def get_tasks(self, run_id: int) -> list[TaskView]:
        return [task for _, task in sorted(self.tasks.items()) if task.run_id == run_id]

    def update_task(
        self,
        task_id: int,
        *,
        passed: bool,
        started_at: datetime | None = None,
    ) -> TaskView:
        with self._lock:
            self.writes.append(("update_task", task_id))
            if self.update_error is not None:
                raise self.update_error
            task = replace(
                self.find_task(task_id),
                passed=passed,
                started_at=started_at,
                finished_at=_CREATED_AT,
            )
            self.tasks[task_id] = task
            self.updates.append((task_id, passed))
            return task

    def finish_run(self, run_id: int) -> RunResult:
        self.finish_calls.append(run_id)
        self.writes.append(("finish_run", run_id))
        if self.finish_error is not None:
            raise self.finish_error
        tasks = self.get_tasks(run_id)
        passed = sum(1 for task in tasks if task.passed)
        self.runs[run_id] = replace(
            self.find_run(run_id),
            status=RunStatus.COMPLETED,
            task_metrics_id=1,
        )
        return RunResult(
            run_id=run_id,
            total_tasks=len(tasks),
            passed_tasks=passed,
            success_rate=passed / len(tasks) if tasks else 0.0,
        )


class FakeShell:
    """Async shell stand-in returning queued outcomes (or raising queued errors)."""

    def __init__(self) -> None:
        self.calls: list[tuple[object, dict[str, object]]] = []
        self.outcomes: list[CommandOutcome | Exception] = []

    @property
    def commands(self) -> list[object]:
        return [command for command, _ in self.calls]

    async def __call__(self, command: object, **kwargs: object) -> CommandOutcome:
        self.calls.append((command, kwargs))
        item = self.outcomes.pop(0) if self.outcomes else exited(0)
        if isinstance(item, Exception):
            raise item
        return item


def exited(code: int) -> CommandOutcome:
    return CommandOutcome(kind=OutcomeKind.EXITED, exit_code=code)


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def recording_logger() -> RecordingLogger:
    return RecordingLogger()


@pytest.fixture()
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture()
def fake_shell() -> FakeShell:
    return FakeShell()
