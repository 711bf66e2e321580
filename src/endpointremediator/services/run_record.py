"""JSON run record written alongside the session log."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from endpointremediator.models import RunSummary, StepResult


class RunRecordService:
    """Collects execution metadata and writes the run record JSON."""

    def __init__(self, record_file: Optional[str], logger):
        self.record_file = record_file
        self.logger = logger
        self.record: Dict[str, Any] = {
            "run_id": None,
            "recipe": None,
            "status": "running",
            "dry_run": False,
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "log_file": None,
            "steps": [],
            "summary": None,
            "error": None,
        }

    def start_run(self, run_id: str, recipe: str, dry_run: bool, log_file: str):
        self.record["run_id"] = run_id
        self.record["recipe"] = recipe
        self.record["status"] = "running"
        self.record["dry_run"] = dry_run
        self.record["log_file"] = log_file
        self.record["started_at"] = self._now()

    def add_results(self, results: Sequence[StepResult]):
        self.record["steps"] = [
            {
                "name": result.step_name,
                "outcome": result.outcome.value,
                "detail": result.detail,
                "critical": result.critical,
                "target": result.target,
                "error_code": result.error_code,
                "reboot_required": result.reboot_required,
            }
            for result in results
        ]

    def set_summary(self, summary: RunSummary):
        self.record["summary"] = {
            "state": summary.state.value,
            "counts": {outcome.value: count for outcome, count in summary.counts.items()},
            "recommendations": list(summary.recommendations),
        }

    def finalize(self, status: str, error: Optional[str] = None):
        self.record["status"] = status
        self.record["finished_at"] = self._now()
        if self.record.get("started_at"):
            started_at = datetime.fromisoformat(self.record["started_at"])
            finished_at = datetime.fromisoformat(self.record["finished_at"])
            self.record["duration_seconds"] = (finished_at - started_at).total_seconds()
        self.record["error"] = error
        self.write()

    def write(self):
        if not self.record_file:
            return

        directory = os.path.dirname(self.record_file) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix="run-record-", suffix=".json", dir=directory)
        except OSError as exc:
            self.logger.warning(f"Could not write run record '{self.record_file}': {exc}")
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.record, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.record_file)
        except OSError as exc:
            self.logger.warning(f"Could not write run record '{self.record_file}': {exc}")
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
