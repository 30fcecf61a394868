"""Persistent store for eval runs and tasks."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from sqlalchemy import func
from sqlmodel import Session, col, select

from evals_runner.orchestrator.errors import NotFoundError
from evals_runner.orchestrator.models import (
    RunCreate,
    RunResult,
    RunStatus,
    RunView,
    TaskView,
)
from evals_runner.storage.alembic_runner import upgrade_head
from evals_runner.storage.common import build_sqlite_engine, from_db_datetime, utc_now
from evals_runner.storage.sqlmodel_models import EvalRun, EvalTask, TaskMetrics


class EvalRepository:
    """Run/task persistence facade backed by SQLModel + SQLite."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_run(self, payload: RunCreate) -> RunView:
        """Create a pending run and one task per exercise."""

        if payload.concurrency < 1:
            raise ValueError("Run concurrency must be >= 1.")
        now = utc_now()
        with Session(self.engine) as session:
            run = EvalRun(
                model=payload.model,
                description=payload.description,
                concurrency=payload.concurrency,
                status=RunStatus.PENDING.value,
                created_at=now,
            )
            session.add(run)
            session.flush()
            seen: set[tuple[str, str]] = set()
            for language, exercise in payload.exercises:
                if (language, exercise) in seen:
                    continue
                seen.add((language, exercise))
                session.add(
                    EvalTask(
                        run_id=run.id,
                        language=language,
                        exercise=exercise,
                        created_at=now,
                    ),
                )
            session.commit()
            session.refresh(run)
            return _to_run_view(run)

    def add_task(self, *, run_id: int, language: str, exercise: str) -> TaskView:
        """Attach one more exercise to an existing run."""

        with Session(self.engine) as session:
            if session.get(EvalRun, run_id) is None:
                raise NotFoundError(f"Run {run_id} not found.")
            row = EvalTask(
                run_id=run_id,
                language=language,
                exercise=exercise,
                created_at=utc_now(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def find_run(self, run_id: int) -> RunView:
        with Session(self.engine) as session:
            row = session.get(EvalRun, run_id)
            if row is None:
                raise NotFoundError(f"Run {run_id} not found.")
            return _to_run_view(row)

    def find_task(self, task_id: int) -> TaskView:
        with Session(self.engine) as session:
            row = session.get(EvalTask, task_id)
            if row is None:
                raise NotFoundError(f"Task {task_id} not found.")
            return _to_task_view(row)

    def get_tasks(self, run_id: int) -> list[TaskView]:
        """All tasks of a run, finished or not, in creation order."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(EvalTask)
                .where(EvalTask.run_id == run_id)
                .order_by(col(EvalTask.id).asc()),
            ).all()
            return [_to_task_view(row) for row in rows]

    def list_runs(self, *, limit: int = 50) -> list[RunView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(EvalRun).order_by(col(EvalRun.id).desc()).limit(limit),
            ).all()
            return [_to_run_view(row) for row in rows]

    def update_task(
        self,
        task_id: int,
        *,
        passed: bool,
        started_at: datetime | None = None,
    ) -> TaskView:
        """Record task outcome and mark it finished in a single write."""

        with Session(self.engine) as session:
            row = session.get(EvalTask, task_id)
            if row is None:
                raise NotFoundError(f"Task {task_id} not found.")
            row.passed = passed
            if started_at is not None:
                row.started_at = started_at
            row.finished_at = utc_now()
            session.add(row)
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def finish_run(self, run_id: int) -> RunResult:
        """Compute aggregate pass rate and attach it to the run."""

        with Session(self.engine) as session:
            run = session.get(EvalRun, run_id)
            if run is None:
                raise NotFoundError(f"Run {run_id} not found.")
            total = session.exec(
                select(func.count()).select_from(EvalTask).where(EvalTask.run_id == run_id),
            ).one()
            passed = session.exec(
                select(func.count())
                .select_from(EvalTask)
                .where(EvalTask.run_id == run_id, col(EvalTask.passed).is_(True)),
            ).one()
            success_rate = passed / total if total else 0.0
            metrics = TaskMetrics(
                total_tasks=total,
                passed_tasks=passed,
                success_rate=success_rate,
                created_at=utc_now(),
            )
            session.add(metrics)
            session.flush()
            run.task_metrics_id = metrics.id
            run.status = RunStatus.COMPLETED.value
            session.add(run)
            session.commit()
            return RunResult(
                run_id=run_id,
                total_tasks=total,
                passed_tasks=passed,
                success_rate=success_rate,
            )


def _to_run_view(row: EvalRun) -> RunView:
    if row.id is None:
        raise RuntimeError("Run row has no primary key.")
    return RunView(
        id=row.id,
        model=row.model,
        description=row.description,
        concurrency=row.concurrency,
        status=RunStatus(row.status),
        task_metrics_id=row.task_metrics_id,
        created_at=from_db_datetime(row.created_at) or utc_now(),
    )


def _to_task_view(row: EvalTask) -> TaskView:
    if row.id is None:
        raise RuntimeError("Task row has no primary key.")
    return TaskView(
        id=row.id,
        run_id=row.run_id,
        language=row.language,
        exercise=row.exercise,
        passed=row.passed,
        started_at=from_db_datetime(row.started_at),
        finished_at=from_db_datetime(row.finished_at),
        created_at=from_db_datetime(row.created_at) or utc_now(),
    )
