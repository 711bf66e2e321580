"""Service control facility backed by ``sc.exe``."""

import re
import time
from typing import Callable, Optional

from endpointremediator.constants import SERVICE_POLL_INTERVAL_SECONDS, SERVICE_POLL_TIMEOUT_SECONDS
from endpointremediator.errors import ActionFailed

SERVICE_DOES_NOT_EXIST = 1060
SERVICE_ALREADY_RUNNING = 1056

_STATE_RE = re.compile(r"^\s*STATE\s*:\s*\d+\s+(\w+)", re.MULTILINE)
_START_TYPE_RE = re.compile(r"^\s*START_TYPE\s*:\s*\d+\s+(\w+)(\s+\(DELAYED\))?", re.MULTILINE)

_START_TYPES = {
    "AUTO_START": "auto",
    "DEMAND_START": "demand",
    "DISABLED": "disabled",
    "BOOT_START": "boot",
    "SYSTEM_START": "system",
}
START_TYPE_CHOICES = ("auto", "delayed-auto", "demand", "disabled")


class ServiceControl:
    """Queries, configures and starts Windows services."""

    def __init__(self, command_runner, logger, sleep: Callable[[float], None] = time.sleep):
        self.command_runner = command_runner
        self.logger = logger
        self.sleep = sleep

    def status(self, name: str) -> Optional[str]:
        """Returns the service state such as ``RUNNING``, or None when it is not installed."""
        result = self.command_runner.run(["sc.exe", "query", name], check=False, capture_output=True)
        if result.returncode == SERVICE_DOES_NOT_EXIST:
            return None
        match = _STATE_RE.search(result.stdout or "")
        if result.returncode != 0 or not match:
            raise ActionFailed(
                f"sc.exe query {name} returned {result.returncode}: {(result.stdout or '').strip()}",
                code="service_start_failed",
            )
        return match.group(1).upper()

    def startup_type(self, name: str) -> Optional[str]:
        result = self.command_runner.run(["sc.exe", "qc", name], check=False, capture_output=True)
        if result.returncode == SERVICE_DOES_NOT_EXIST:
            return None
        match = _START_TYPE_RE.search(result.stdout or "")
        if not match:
            return None
        start_type = _START_TYPES.get(match.group(1).upper(), match.group(1).lower())
        if start_type == "auto" and match.group(2):
            return "delayed-auto"
        return start_type

    def set_startup_type(self, name: str, start_type: str):
        if start_type not in START_TYPE_CHOICES:
            raise ActionFailed(f"Unsupported service start type: {start_type}")
        result = self.command_runner.run(
            ["sc.exe", "config", name, "start=", start_type],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            raise ActionFailed(
                f"sc.exe config {name} start= {start_type} returned {result.returncode}: "
                f"{(result.stdout or '').strip()}",
                code="service_start_failed",
            )

    def start(self, name: str):
        result = self.command_runner.run(["sc.exe", "start", name], check=False, capture_output=True)
        if result.returncode not in (0, SERVICE_ALREADY_RUNNING):
            raise ActionFailed(
                f"sc.exe start {name} returned {result.returncode}: {(result.stdout or '').strip()}",
                code="service_start_failed",
            )

    def wait_for_status(
        self,
        name: str,
        desired: str = "RUNNING",
        timeout: float = SERVICE_POLL_TIMEOUT_SECONDS,
        interval: float = SERVICE_POLL_INTERVAL_SECONDS,
    ) -> bool:
        attempts = max(1, int(timeout / interval))
        for attempt in range(attempts):
            current = self.status(name)
            if current == desired:
                return True
            self.logger.debug("Service %s is %s, waiting for %s (%s/%s)", name, current, desired, attempt + 1, attempts)
            self.sleep(interval)
        return self.status(name) == desired
