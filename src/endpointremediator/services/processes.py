"""Process control facility backed by tasklist/taskkill."""

import csv
import io
from typing import List

from endpointremediator.errors import ActionFailed


class ProcessControl:
    """Lists and terminates processes by image name."""

    def __init__(self, command_runner):
        self.command_runner = command_runner

    def list(self) -> List[str]:
        result = self.command_runner.run(
            ["tasklist.exe", "/FO", "CSV", "/NH"],
            check=True,
            capture_output=True,
        )
        names: List[str] = []
        for row in csv.reader(io.StringIO(result.stdout or "")):
            if not row or not row[0].strip():
                continue
            # tasklist prints a localized info line instead of CSV when nothing matches
            if len(row) < 2:
                continue
            names.append(row[0].strip())
        return names

    def is_running(self, name: str) -> bool:
        wanted = name.lower()
        return any(process.lower() == wanted for process in self.list())

    def stop(self, name: str):
        result = self.command_runner.run(
            ["taskkill.exe", "/IM", name, "/F", "/T"],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            stderr = (result.stderr or result.stdout or "").strip()
            raise ActionFailed(
                f"taskkill exited with {result.returncode} for {name}: {stderr or 'no output'}",
                code="process_stop_failed",
            )
