"""Per-run append-only log file with a console mirror."""

from __future__ import annotations

import itertools
import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

_LEVEL_LABELS = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}
_instance_ids = itertools.count(1)


class RunLineFormatter(logging.Formatter):
    """``[timestamp | LEVEL | tag] message [json args]``."""

    def __init__(self, tag: str) -> None:
        super().__init__()
        self.tag = tag

    def format(self, record: logging.LogRecord) -> str:
        timestamp = (
            datetime.fromtimestamp(record.created, tz=UTC)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )
        level = _LEVEL_LABELS.get(record.levelno, record.levelname)
        line = f"[{timestamp} | {level} | {self.tag}] {record.getMessage()}"
        log_args = getattr(record, "log_args", ())
        if log_args:
            line = f"{line} {json.dumps(list(log_args), default=_json_fallback)}"
        return line


class _RunFileHandler(logging.FileHandler):
    def handleError(self, record: logging.LogRecord) -> None:  # noqa: N802
        _, error, _ = sys.exc_info()
        logger.error("Failed to write to log file %s: %s", self.baseFilename, error)


class RunLogger:
    """Leveled, tagged log sink for one run or task.

    Lines go to ``log_dir/filename`` (append mode) and to stdout. When the file
    cannot be opened the logger keeps working with the console mirror only.
    """

    def __init__(self, *, log_dir: Path, filename: str, tag: str) -> None:
        self.log_dir = Path(log_dir)
        self.log_path = self.log_dir / filename
        self.tag = tag
        self._logger = logging.Logger(f"evals_runner.run.{next(_instance_ids)}", logging.DEBUG)
        self._logger.propagate = False
        formatter = RunLineFormatter(tag)

        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        self._file_handler = self._open_file_handler(formatter)
        if self._file_handler is not None:
            self._logger.addHandler(self._file_handler)

    @property
    def persistent(self) -> bool:
        return self._file_handler is not None

    def info(self, message: str, *args: object) -> None:
        self._emit(logging.INFO, message, args)

    def log(self, message: str, *args: object) -> None:
        self._emit(logging.INFO, message, args)

    def warn(self, message: str, *args: object) -> None:
        self._emit(logging.WARNING, message, args)

    def error(self, message: str, *args: object) -> None:
        self._emit(logging.ERROR, message, args)

    def debug(self, message: str, *args: object) -> None:
        self._emit(logging.DEBUG, message, args)

    def close(self) -> None:
        handler = self._file_handler
        self._file_handler = None
        if handler is None:
            return
        self._logger.removeHandler(handler)
        handler.close()

    def _emit(self, level: int, message: str, args: tuple[object, ...]) -> None:
        self._logger.log(level, message, extra={"log_args": args})

    def _open_file_handler(self, formatter: logging.Formatter) -> logging.FileHandler | None:
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            logger.error("Failed to create log directory %s: %s", self.log_dir, error)
            return None
        try:
            handler = _RunFileHandler(self.log_path, mode="a", encoding="utf-8")
        except OSError as error:
            logger.error("Failed to create log file %s: %s", self.log_path, error)
            return None
        handler.setFormatter(formatter)
        return handler


def _json_fallback(value: object) -> object:
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    return str(value)
