"""Task execution backends: agent runner, unit tests, subprocess invocation."""

from evals_runner.orchestrator.backend.agent_runner import CliAgentTaskRunner
from evals_runner.orchestrator.backend.base import PublishFn, TaskRunner, UnitTestRunner
from evals_runner.orchestrator.backend.shell import CommandOutcome, OutcomeKind, run_shell
from evals_runner.orchestrator.backend.unit_tests import ExerciseUnitTestRunner

__all__ = [
    "CliAgentTaskRunner",
    "CommandOutcome",
    "ExerciseUnitTestRunner",
    "OutcomeKind",
    "PublishFn",
    "TaskRunner",
    "UnitTestRunner",
    "run_shell",
]
