"""Runtime configuration for the evals harness."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_REDIS_URL = "redis://localhost:6379"
DEFAULT_EVALS_TIMEOUT_SECONDS = 300


@dataclass(slots=True)
class RedisSettings:
    """Liveness store connection settings."""

    url: str = DEFAULT_REDIS_URL


@dataclass(slots=True)
class LivenessSettings:
    """Heartbeat and runner registration settings."""

    timeout_seconds: int = DEFAULT_EVALS_TIMEOUT_SECONDS


@dataclass(slots=True)
class PathSettings:
    """Filesystem locations shared with containers."""

    log_root: Path = Path("/var/log/evals")
    host_log_dir: Path = Path("/tmp/evals")  # noqa: S108
    repo_dir: Path = Path("/evals")


@dataclass(slots=True)
class ContainerSettings:
    """Settings for containerized task execution."""

    network: str = "evals_default"
    image: str = "evals-runner"
    cli_command: str = "evals-runner run"
    max_retries: int = 10
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 60.0


@dataclass(slots=True)
class RunnerSettings:
    """Agent and unit-test execution settings."""

    agent_command_template: str = ""
    task_timeout_seconds: int = 1_800
    unit_test_timeout_seconds: int = 120


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".evals.db")
    redis: RedisSettings = field(default_factory=RedisSettings)
    liveness: LivenessSettings = field(default_factory=LivenessSettings)
    paths: PathSettings = field(default_factory=PathSettings)
    container: ContainerSettings = field(default_factory=ContainerSettings)
    runner: RunnerSettings = field(default_factory=RunnerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults matching the compose setup."""

        return cls(
            db_path=db_path or Path(os.getenv("EVALS_DB_PATH", ".evals.db")),
            redis=RedisSettings(url=os.getenv("REDIS_URL", DEFAULT_REDIS_URL)),
            liveness=LivenessSettings(
                timeout_seconds=int(
                    os.getenv("EVALS_TIMEOUT_SECONDS", str(DEFAULT_EVALS_TIMEOUT_SECONDS)),
                ),
            ),
            paths=PathSettings(
                log_root=Path(os.getenv("EVALS_LOG_ROOT", "/var/log/evals")),
                host_log_dir=Path(os.getenv("EVALS_HOST_LOG_DIR", "/tmp/evals")),  # noqa: S108
                repo_dir=Path(os.getenv("EVALS_REPO_DIR", "/evals")),
            ),
            container=ContainerSettings(
                network=os.getenv("EVALS_DOCKER_NETWORK", "evals_default"),
                image=os.getenv("EVALS_DOCKER_IMAGE", "evals-runner"),
                cli_command=os.getenv("EVALS_CONTAINER_CLI", "evals-runner run"),
                max_retries=int(os.getenv("EVALS_CONTAINER_MAX_RETRIES", "10")),
                retry_base_seconds=float(os.getenv("EVALS_CONTAINER_RETRY_BASE_SECONDS", "1.0")),
                retry_max_seconds=float(os.getenv("EVALS_CONTAINER_RETRY_MAX_SECONDS", "60.0")),
            ),
            runner=RunnerSettings(
                agent_command_template=os.getenv("EVALS_AGENT_COMMAND", "").strip(),
                task_timeout_seconds=int(os.getenv("EVALS_TASK_TIMEOUT_SECONDS", "1800")),
                unit_test_timeout_seconds=int(
                    os.getenv("EVALS_UNIT_TEST_TIMEOUT_SECONDS", "120"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the orchestrator cannot work with."""

        _validate_redis_url(self.redis.url)
        if self.liveness.timeout_seconds < 2:
            raise ValueError("EVALS_TIMEOUT_SECONDS must be >= 2.")
        if self.container.max_retries < 0:
            raise ValueError("EVALS_CONTAINER_MAX_RETRIES must be >= 0.")
        if self.container.retry_base_seconds < 0 or self.container.retry_max_seconds < 0:
            raise ValueError("Container retry delays must be >= 0.")
        if self.runner.task_timeout_seconds <= 0:
            raise ValueError("EVALS_TASK_TIMEOUT_SECONDS must be > 0.")
        if self.runner.unit_test_timeout_seconds <= 0:
            raise ValueError("EVALS_UNIT_TEST_TIMEOUT_SECONDS must be > 0.")
        if not self.container.cli_command.strip():
            raise ValueError("EVALS_CONTAINER_CLI must not be empty.")

    def validate_for_agent(self) -> None:
        """Raise configuration error if the agent command template is unusable."""

        template = self.runner.agent_command_template
        if not template:
            raise ValueError("EVALS_AGENT_COMMAND is required to run tasks in-process.")
        if "{prompt}" not in template and "{prompt_file}" not in template:
            raise ValueError("EVALS_AGENT_COMMAND must include {prompt} or {prompt_file}.")

    def validate_for_container(self) -> None:
        """Raise configuration error if task containers cannot reach the database.

        Task containers only share the log mount with this process, so the
        SQLite file has to live under ``paths.log_root``.
        """

        if not self.db_path.resolve().is_relative_to(self.paths.log_root.resolve()):
            raise ValueError(
                f"EVALS_DB_PATH {str(self.db_path)!r} must be under EVALS_LOG_ROOT "
                f"{str(self.paths.log_root)!r} when running inside a container.",
            )

    def container_db_path(self, container_log_dir: Path) -> Path:
        """Database path inside a task container that mounts the logs at ``container_log_dir``."""

        relative = self.db_path.resolve().relative_to(self.paths.log_root.resolve())
        return container_log_dir / relative


def _validate_redis_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"redis", "rediss", "unix"}:
        raise ValueError(
            f"Invalid REDIS_URL: {value!r}. Expected redis://, rediss:// or unix:// scheme.",
        )
