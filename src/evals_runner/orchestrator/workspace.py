"""Evals checkout management and execution-environment probe."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from uuid import uuid4

from evals_runner.orchestrator.backend.shell import ShellFn, run_shell
from evals_runner.orchestrator.errors import WorkspaceError
from evals_runner.orchestrator.liveness import resolve_host_identity
from evals_runner.orchestrator.models import RunView

logger = logging.getLogger(__name__)

_DOCKERENV_PATH = Path("/.dockerenv")
_GIT_USER_NAME = "evals-runner"
_GIT_USER_EMAIL = "evals-runner@localhost"


def is_docker_container(dockerenv_path: Path = _DOCKERENV_PATH) -> bool:
    """True when this process already runs inside a container."""

    if os.environ.get("HOST_EXECUTION_METHOD", "").strip().lower() == "docker":
        return True
    return dockerenv_path.exists()


def get_tag(name: str) -> str:
    return f"{name}|{resolve_host_identity()}|{os.getpid()}"


class EvalsWorkspace:
    """Git operations on the shared evals checkout, keyed to one run."""

    def __init__(self, repo_dir: Path, *, shell: ShellFn = run_shell) -> None:
        self.repo_dir = repo_dir
        self._shell = shell

    def is_docker_container(self) -> bool:
        return is_docker_container()

    async def reset_repo(self, run: RunView) -> str:
        """Discard local changes and branch off for this run; returns the branch name."""

        branch = f"runs/{run.id}-{uuid4().hex[:8]}"
        await self._git("config", "user.name", _GIT_USER_NAME)
        await self._git("config", "user.email", _GIT_USER_EMAIL)
        await self._git("checkout", "-f")
        await self._git("clean", "-fd")
        await self._git("checkout", "-b", branch)
        logger.info("Evals checkout %s reset to branch %s", self.repo_dir, branch)
        return branch

    async def commit_repo_changes(self, run: RunView) -> None:
        await self._git("add", ".")
        await self._git("commit", "-m", f"Run #{run.id}", "--no-verify", "--allow-empty")
        logger.info("Committed evals checkout changes for run %s", run.id)

    async def _git(self, *args: str) -> str:
        outcome = await self._shell(["git", *args], cwd=self.repo_dir)
        if not outcome.ok:
            raise WorkspaceError(
                f"git {' '.join(args)} failed with {outcome.describe()}: {outcome.stderr.strip()}",
            )
        return outcome.stdout
