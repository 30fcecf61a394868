from __future__ import annotations

import json
import logging
import re
from pathlib import Path

import allure

from evals_runner.orchestrator.models import RunResult
from evals_runner.orchestrator.run_logger import RunLogger

pytestmark = [
    allure.epic("Run Orchestration"),
    allure.feature("Run Logs"),
]

_LINE = re.compile(
    r"^\[\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z \| (?P<level>[A-Z]+) \| (?P<tag>[^\]]+)\] "
    r"(?P<rest>.*)$",
)


def _lines(path: Path) -> list[str]:
    return path.read_text("utf-8").splitlines()


def test_lines_are_tagged_and_timestamped(tmp_path: Path) -> None:
    run_logger = RunLogger(log_dir=tmp_path / "runs" / "1", filename="controller.log", tag="runEvals|h|1")
    run_logger.info("hello")
    run_logger.warn("careful")
    run_logger.error("broken")
    run_logger.debug("details")
    run_logger.log("alias")
    run_logger.close()

    parsed = [_LINE.match(line) for line in _lines(tmp_path / "runs" / "1" / "controller.log")]
    assert all(parsed)
    assert [(match["level"], match["rest"]) for match in parsed] == [
        ("INFO", "hello"),
        ("WARN", "careful"),
        ("ERROR", "broken"),
        ("DEBUG", "details"),
        ("INFO", "alias"),
    ]
    assert {match["tag"] for match in parsed} == {"runEvals|h|1"}


def test_extra_args_are_appended_as_json_array(tmp_path: Path) -> None:
    run_logger = RunLogger(log_dir=tmp_path, filename="a.log", tag="t")
    run_logger.info(
        "result ->",
        RunResult(run_id=1, total_tasks=3, passed_tasks=2, success_rate=2 / 3),
    )
    run_logger.error("error processing task", RuntimeError("boom"))
    run_logger.close()

    first, second = _lines(tmp_path / "a.log")
    payload = json.loads(first.split("result -> ", 1)[1])
    assert payload == [
        {"runId": 1, "totalTasks": 3, "passedTasks": 2, "successRate": 2 / 3},
    ]
    assert json.loads(second.split("error processing task ", 1)[1]) == ["RuntimeError: boom"]


def test_file_is_opened_in_append_mode(tmp_path: Path) -> None:
    for message in ("first", "second"):
        run_logger = RunLogger(log_dir=tmp_path, filename="task.log", tag="t")
        run_logger.info(message)
        run_logger.close()

    assert [line.rsplit("] ", 1)[1] for line in _lines(tmp_path / "task.log")] == [
        "first",
        "second",
    ]


def test_console_mirror_keeps_working_after_close(tmp_path: Path, capsys) -> None:
    run_logger = RunLogger(log_dir=tmp_path, filename="task.log", tag="t")
    run_logger.info("before")
    run_logger.close()
    run_logger.info("after")
    run_logger.close()

    assert [line.rsplit("] ", 1)[1] for line in _lines(tmp_path / "task.log")] == ["before"]
    stdout = capsys.readouterr().out
    assert "before" in stdout
    assert "after" in stdout


def test_unusable_directory_falls_back_to_console(tmp_path: Path, capsys, caplog) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", "utf-8")

    with caplog.at_level(logging.ERROR):
        run_logger = RunLogger(log_dir=blocker / "runs", filename="task.log", tag="t")
    run_logger.info("still visible")
    run_logger.close()

    assert run_logger.persistent is False
    assert "Failed to create log directory" in caplog.text
    assert "still visible" in capsys.readouterr().out


def test_unopenable_file_falls_back_to_console(tmp_path: Path, caplog) -> None:
    (tmp_path / "task.log").mkdir()

    with caplog.at_level(logging.ERROR):
        run_logger = RunLogger(log_dir=tmp_path, filename="task.log", tag="t")
    run_logger.info("console only")

    assert run_logger.persistent is False
    assert "Failed to create log file" in caplog.text
