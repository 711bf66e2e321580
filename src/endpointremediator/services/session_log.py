"""Session log for a single remediation run."""

import logging
import os
import tempfile
import uuid
from datetime import datetime
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

from endpointremediator.constants import LOG_DIR_NAME, LOG_FILE_PREFIX
from endpointremediator.models import LogLevel, LogRecord


class AppendOnlyFileHandler(logging.Handler):
    """Opens the log file for every record and closes it right after the write."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        self.write_failures = 0

    def emit(self, record: logging.LogRecord):
        line = getattr(record, "session_line", None) or self.format(record)
        try:
            with open(self.path, "a", encoding="utf-8") as file_obj:
                file_obj.write(line + "\n")
        except OSError:
            self.write_failures += 1


def default_log_dir() -> str:
    return os.path.join(tempfile.gettempdir(), LOG_DIR_NAME)


def build_log_path(log_dir: Optional[str], label: str, started_at: Optional[datetime] = None) -> str:
    started_at = started_at or datetime.now()
    stamp = started_at.strftime("%Y%m%d-%H%M%S")
    return os.path.join(log_dir or default_log_dir(), f"{LOG_FILE_PREFIX}-{label}-{stamp}.log")


class SessionLogger:
    """Writes leveled records to the session file and mirrors them to the console."""

    def __init__(self, log_path: str, silent: bool = False, console: Optional[Console] = None):
        self.log_path = log_path
        self.silent = silent
        self.console = console or Console(stderr=True)
        self.records: List[LogRecord] = []

        try:
            os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)
        except OSError:
            pass

        self._logger = logging.getLogger(f"endpointremediator.session.{uuid.uuid4().hex[:8]}")
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        self._file_handler = AppendOnlyFileHandler(log_path)
        self._file_handler.setLevel(logging.INFO)
        self._logger.addHandler(self._file_handler)

        self._console_handler = RichHandler(
            console=self.console,
            show_path=False,
            show_time=False,
            markup=False,
        )
        self._console_handler.setLevel(logging.WARNING if silent else logging.INFO)
        self._logger.addHandler(self._console_handler)

    @property
    def write_failures(self) -> int:
        return self._file_handler.write_failures

    def log(self, level: LogLevel, message: str) -> LogRecord:
        record = LogRecord(timestamp=datetime.now(), level=level, message=message)
        self.records.append(record)
        self._logger.log(level.severity, message, extra={"session_line": record.to_line()})
        return record

    def info(self, message: str) -> LogRecord:
        return self.log(LogLevel.INFO, message)

    def success(self, message: str) -> LogRecord:
        return self.log(LogLevel.SUCCESS, message)

    def warning(self, message: str) -> LogRecord:
        return self.log(LogLevel.WARNING, message)

    def error(self, message: str) -> LogRecord:
        return self.log(LogLevel.ERROR, message)

    def close(self):
        for handler in (self._file_handler, self._console_handler):
            self._logger.removeHandler(handler)
            handler.close()
