"""Subprocess-based task runner for CLI coding agents."""

from __future__ import annotations

import shlex
from pathlib import Path

from evals_runner.orchestrator.backend.base import PublishFn
from evals_runner.orchestrator.backend.shell import OutcomeKind, ShellFn, run_shell
from evals_runner.orchestrator.errors import TaskRunnerError
from evals_runner.orchestrator.models import EvalEventName, RunView, TaskOutcomeEvent, TaskView
from evals_runner.orchestrator.run_logger import RunLogger

_DEFAULT_PROMPT = """\
Implement the "{exercise}" exercise in {language}.

The exercise lives in the current working directory. Read .docs/instructions.md
(and .docs/instructions.append.md when present), then edit the stub source files
so that the provided tests pass. Do not modify the test files.
"""


class CliAgentTaskRunner:
    """Execute the agent command template inside the exercise directory."""

    def __init__(
        self,
        *,
        repo_dir: Path,
        command_template: str,
        timeout_seconds: int,
        shell: ShellFn = run_shell,
    ) -> None:
        self.repo_dir = repo_dir
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds
        self._shell = shell

    async def run(
        self,
        *,
        run: RunView,
        task: TaskView,
        publish: PublishFn,
        logger: RunLogger,
    ) -> None:
        exercise_dir = exercise_path(self.repo_dir, task)
        if not exercise_dir.is_dir():
            raise TaskRunnerError(f"Exercise directory not found: {exercise_dir}", transient=False)

        prompt = build_prompt(repo_dir=self.repo_dir, task=task)
        prompt_file = exercise_dir / ".evals_prompt.md"
        prompt_file.write_text(prompt, "utf-8")
        argv = build_run_args(
            command_template=self.command_template,
            model=run.model,
            prompt=prompt,
            prompt_file=prompt_file,
            exercise_dir=exercise_dir,
        )

        await publish(TaskOutcomeEvent(event_name=EvalEventName.TASK_STARTED, task_id=task.id))
        logger.info(f"agent command: {argv[0]} (cwd={exercise_dir})")
        outcome = await self._shell(
            argv,
            cwd=exercise_dir,
            env={"EVALS_TASK_ID": str(task.id), "EVALS_RUN_ID": str(run.id)},
            timeout_seconds=self.timeout_seconds,
        )
        try:
            prompt_file.unlink()
        except OSError:
            logger.debug(f"could not remove {prompt_file}")

        if outcome.kind == OutcomeKind.SPAWN_FAILED:
            raise TaskRunnerError(f"agent failed to start: {outcome.error}", transient=True)
        if not outcome.ok:
            if outcome.stderr.strip():
                logger.error("agent stderr", outcome.stderr.strip()[-2000:])
            raise TaskRunnerError(
                f"agent process failed with {outcome.describe()}",
                transient=outcome.kind == OutcomeKind.TIMED_OUT,
            )

        await publish(
            TaskOutcomeEvent(event_name=EvalEventName.TASK_COMPLETED, task_id=task.id),
        )


def exercise_path(repo_dir: Path, task: TaskView) -> Path:
    return repo_dir / task.language / task.exercise


def build_prompt(*, repo_dir: Path, task: TaskView) -> str:
    """Language prompt from ``prompts/{language}.md`` in the evals repo, else a default."""

    template_path = repo_dir / "prompts" / f"{task.language}.md"
    if template_path.is_file():
        template = template_path.read_text("utf-8")
    else:
        template = _DEFAULT_PROMPT
    return template.replace("{exercise}", task.exercise).replace("{language}", task.language)


def build_run_args(
    *,
    command_template: str,
    model: str,
    prompt: str,
    prompt_file: Path,
    exercise_dir: Path,
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise TaskRunnerError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped and "{prompt_file}" not in stripped:
        raise TaskRunnerError(
            "Agent command template must include {prompt} or {prompt_file}.",
            transient=False,
        )
    try:
        rendered = stripped.format(
            model=shlex.quote(model),
            prompt=shlex.quote(prompt),
            prompt_file=shlex.quote(str(prompt_file)),
            exercise_dir=shlex.quote(str(exercise_dir)),
        )
    except (KeyError, IndexError) as error:
        raise TaskRunnerError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise TaskRunnerError("Agent command template rendered empty command.", transient=False)
    return argv
