"""CLI entrypoint for evals-runner."""

import logging
import sys
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from evals_runner import __version__
from evals_runner.orchestrator.controllers import (
    CreateRunCommand,
    EvalsCliController,
    InitDbCommand,
    ListRunsCommand,
    ListTasksCommand,
    RunEvalsCommand,
    RunTaskCommand,
)
from evals_runner.orchestrator.errors import EvalsError

click.rich_click.USE_MARKDOWN = True
EVALS_CONTROLLER = EvalsCliController()
_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="evals-runner")
@click.option(
    "--log-level",
    envvar="EVALS_LOG_LEVEL",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Level for harness diagnostics on stderr.",
)
def evals_runner(log_level: str) -> None:
    """Evals runner CLI.

    Orchestrates coding-agent eval runs: one task per exercise, bounded
    concurrency, Redis liveness keys and a pass-rate summary per run.
    """

    logging.basicConfig(level=log_level.upper(), format=_LOG_FORMAT, stream=sys.stderr)


@evals_runner.command("init-db")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def init_db(db_path: Path | None) -> None:
    """Create or migrate the evals database."""

    _emit_lines(_invoke(lambda: EVALS_CONTROLLER.init_db(InitDbCommand(db_path=db_path))))


@evals_runner.command("create-run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--model", required=True, help="Model id passed to the agent command.")
@click.option(
    "--exercise",
    "exercises",
    multiple=True,
    help="Exercise as language/name. Can be repeated; omit to scan the evals repo.",
)
@click.option(
    "--language",
    "languages",
    multiple=True,
    help="Restrict repo scanning to this language. Can be repeated.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=2,
    show_default=True,
    help="Maximum tasks processed at once.",
)
@click.option("--description", default=None, help="Free-form run description.")
def create_run(  # noqa: PLR0913
    db_path: Path | None,
    model: str,
    exercises: tuple[str, ...],
    languages: tuple[str, ...],
    concurrency: int,
    description: str | None,
) -> None:
    """Register a run with one task per exercise."""

    _emit_lines(
        _invoke(
            lambda: EVALS_CONTROLLER.create_run(
                CreateRunCommand(
                    db_path=db_path,
                    model=model,
                    exercises=exercises,
                    languages=languages,
                    concurrency=concurrency,
                    description=description,
                ),
            ),
        ),
    )


@evals_runner.command("runs")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Max number of runs to print.",
)
def list_runs(db_path: Path | None, limit: int) -> None:
    """List recent runs."""

    _emit_lines(
        _invoke(lambda: EVALS_CONTROLLER.list_runs(ListRunsCommand(db_path=db_path, limit=limit))),
    )


@evals_runner.command("tasks")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--run-id", type=int, required=True, help="Run id.")
def list_tasks(db_path: Path | None, run_id: int) -> None:
    """List tasks of a run with their outcome."""

    _emit_lines(
        _invoke(
            lambda: EVALS_CONTROLLER.list_tasks(ListTasksCommand(db_path=db_path, run_id=run_id)),
        ),
    )


@evals_runner.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--run-id", type=int, default=None, help="Orchestrate every unfinished task of a run.")
@click.option(
    "--task-id",
    "--taskId",
    "task_id",
    type=int,
    default=None,
    help="Process a single task in this process (used inside task containers).",
)
def run(db_path: Path | None, run_id: int | None, task_id: int | None) -> None:
    """Run an eval run, or a single task of one.

    Exactly one of `--run-id` and `--task-id` is required.
    """

    if (run_id is None) == (task_id is None):
        raise click.UsageError("Pass exactly one of --run-id or --task-id.")
    if run_id is not None:
        lines = _invoke(
            lambda: EVALS_CONTROLLER.run_evals(RunEvalsCommand(db_path=db_path, run_id=run_id)),
        )
    else:
        lines = _invoke(
            lambda: EVALS_CONTROLLER.run_task(RunTaskCommand(db_path=db_path, task_id=task_id)),
        )
    _emit_lines(lines)


def _invoke(action: Callable[[], list[str]]) -> list[str]:
    try:
        return action()
    except (EvalsError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    evals_runner()
