"""Domain models for eval runs, tasks and outcome events."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class RunStatus(str, Enum):
    """Run lifecycle states."""

    PENDING = "pending"
    COMPLETED = "completed"


class EvalEventName(str, Enum):
    """Event names published on the per-run channel."""

    TASK_STARTED = "TaskStarted"
    TASK_COMPLETED = "TaskCompleted"
    EVAL_PASS = "EvalPass"
    EVAL_FAIL = "EvalFail"


@dataclass(slots=True)
class RunCreate:
    """Input payload for registering a run with its exercises."""

    model: str
    exercises: tuple[tuple[str, str], ...]
    concurrency: int = 2
    description: str | None = None


@dataclass(slots=True)
class RunView:
    """Readable run view for CLI and orchestrator logic."""

    id: int
    model: str
    description: str | None
    concurrency: int
    status: RunStatus
    task_metrics_id: int | None
    created_at: datetime

    @property
    def is_finished(self) -> bool:
        return self.task_metrics_id is not None


@dataclass(slots=True)
class TaskView:
    """Readable task view."""

    id: int
    run_id: int
    language: str
    exercise: str
    passed: bool | None
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime

    @property
    def label(self) -> str:
        return f"{self.language}/{self.exercise}"


@dataclass(slots=True)
class RunResult:
    """Aggregate outcome persisted when a run is finished."""

    run_id: int
    total_tasks: int
    passed_tasks: int
    success_rate: float

    def to_dict(self) -> dict[str, object]:
        return {
            "runId": self.run_id,
            "totalTasks": self.total_tasks,
            "passedTasks": self.passed_tasks,
            "successRate": self.success_rate,
        }


@dataclass(slots=True)
class TaskOutcomeEvent:
    """Transient message published once per task outcome."""

    event_name: EvalEventName
    task_id: int
    payload: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        message: dict[str, object] = {
            "eventName": self.event_name.value,
            "taskId": self.task_id,
        }
        if self.payload:
            message["payload"] = self.payload
        return json.dumps(message, separators=(",", ":"))


@dataclass(slots=True)
class TaskExecution:
    """What an executor reports back for one task unit."""

    task_id: int
    attempts: int
    passed: bool | None
    outcome_recorded: bool
