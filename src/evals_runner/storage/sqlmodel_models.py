"""SQLModel ORM tables for evals storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint
from sqlmodel import Field, SQLModel


class TaskMetrics(SQLModel, table=True):
    __tablename__ = "task_metrics"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    total_tasks: int = 0
    passed_tasks: int = 0
    success_rate: float = 0.0
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EvalRun(SQLModel, table=True):
    __tablename__ = "runs"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    model: str
    description: str | None = None
    concurrency: int = 2
    status: str = Field(default="pending", index=True)
    task_metrics_id: int | None = Field(
        default=None,
        sa_column=Column(
            Integer,
            ForeignKey("task_metrics.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class EvalTask(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint("run_id", "language", "exercise", name="uq_tasks_run_exercise"),
    )

    id: int | None = Field(default=None, primary_key=True)
    run_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("runs.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    language: str
    exercise: str
    passed: bool | None = None
    started_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    finished_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
    )
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
