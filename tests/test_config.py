from __future__ import annotations

from pathlib import Path

import allure
import pytest

from evals_runner.config import (
    ContainerSettings,
    LivenessSettings,
    PathSettings,
    RedisSettings,
    RunnerSettings,
    Settings,
)

pytestmark = [
    allure.epic("Run Orchestration"),
    allure.feature("Configuration"),
]

_ENV_KEYS = (
    "EVALS_DB_PATH",
    "REDIS_URL",
    "EVALS_TIMEOUT_SECONDS",
    "EVALS_LOG_ROOT",
    "EVALS_HOST_LOG_DIR",
    "EVALS_REPO_DIR",
    "EVALS_DOCKER_NETWORK",
    "EVALS_DOCKER_IMAGE",
    "EVALS_CONTAINER_CLI",
    "EVALS_CONTAINER_MAX_RETRIES",
    "EVALS_AGENT_COMMAND",
)


@pytest.fixture()
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_from_env_defaults_match_compose_setup(clean_env) -> None:
    settings = Settings.from_env()

    assert settings.db_path == Path(".evals.db")
    assert settings.redis.url == "redis://localhost:6379"
    assert settings.liveness.timeout_seconds == 300
    assert settings.paths.log_root == Path("/var/log/evals")
    assert settings.paths.host_log_dir == Path("/tmp/evals")
    assert settings.paths.repo_dir == Path("/evals")
    assert settings.container.network == "evals_default"
    assert settings.container.image == "evals-runner"
    assert settings.container.max_retries == 10
    settings.validate()


def test_from_env_reads_overrides(clean_env, tmp_path: Path) -> None:
    clean_env.setenv("REDIS_URL", "redis://cache:6380/1")
    clean_env.setenv("EVALS_TIMEOUT_SECONDS", "60")
    clean_env.setenv("EVALS_REPO_DIR", str(tmp_path))
    clean_env.setenv("EVALS_CONTAINER_MAX_RETRIES", "3")
    clean_env.setenv("EVALS_AGENT_COMMAND", "  agent --prompt-file {prompt_file}  ")

    settings = Settings.from_env(db_path=tmp_path / "x.db")

    assert settings.db_path == tmp_path / "x.db"
    assert settings.redis.url == "redis://cache:6380/1"
    assert settings.liveness.timeout_seconds == 60
    assert settings.paths.repo_dir == tmp_path
    assert settings.container.max_retries == 3
    assert settings.runner.agent_command_template == "agent --prompt-file {prompt_file}"
    settings.validate_for_agent()


def test_validate_rejects_unknown_redis_scheme() -> None:
    with pytest.raises(ValueError, match="Invalid REDIS_URL"):
        Settings(redis=RedisSettings(url="http://localhost:6379")).validate()


def test_validate_rejects_tiny_timeout() -> None:
    with pytest.raises(ValueError, match="EVALS_TIMEOUT_SECONDS"):
        Settings(liveness=LivenessSettings(timeout_seconds=1)).validate()


def test_validate_rejects_negative_retries() -> None:
    with pytest.raises(ValueError, match="MAX_RETRIES"):
        Settings(container=ContainerSettings(max_retries=-1)).validate()


def test_validate_rejects_empty_container_cli() -> None:
    with pytest.raises(ValueError, match="EVALS_CONTAINER_CLI"):
        Settings(container=ContainerSettings(cli_command="  ")).validate()


def test_validate_for_agent_requires_prompt_placeholder() -> None:
    with pytest.raises(ValueError, match="is required"):
        Settings().validate_for_agent()
    settings = Settings(runner=RunnerSettings(agent_command_template="agent --model {model}"))
    with pytest.raises(ValueError, match=r"\{prompt\}"):
        settings.validate_for_agent()


def test_container_db_must_live_under_shared_log_root(tmp_path: Path) -> None:
    log_root = tmp_path / "logs"
    shared = Settings(db_path=log_root / "db" / "evals.db", paths=PathSettings(log_root=log_root))
    private = Settings(db_path=tmp_path / "evals.db", paths=PathSettings(log_root=log_root))

    shared.validate_for_container()
    assert shared.container_db_path(Path("/var/log/evals")) == Path("/var/log/evals/db/evals.db")
    with pytest.raises(ValueError, match="must be under EVALS_LOG_ROOT"):
        private.validate_for_container()
