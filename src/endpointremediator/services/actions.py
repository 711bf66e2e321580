"""Side effects a step can declare, with their dry-run projections."""

import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Tuple, Union

from endpointremediator.constants import (
    INSTALLER_REBOOT_CODES,
    INSTALLER_SUCCESS_CODES,
    SERVICE_POLL_TIMEOUT_SECONDS,
)
from endpointremediator.errors import ActionFailed, InsufficientResources
from endpointremediator.models import FolderPolicy
from endpointremediator.services.backup import BackupCollector
from endpointremediator.services.filesystem import COLLISION_NEWER, COLLISION_SUFFIX


@dataclass(frozen=True)
class ActionReport:
    detail: str
    reboot_required: bool = False


class Action:
    """Base for declared side effects."""

    kind = "action"
    error_code = "step_failed"
    destructive = False

    @property
    def target(self) -> Optional[str]:
        return None

    @property
    def consumes(self) -> Optional[str]:
        """Path this action destroys or empties, if any."""
        return None

    def describe(self) -> str:
        raise NotImplementedError

    def apply(self, toolbox, config, logger) -> ActionReport:
        raise NotImplementedError


@dataclass(frozen=True)
class StopProcess(Action):
    name: str

    kind = "stop_process"
    error_code = "process_stop_failed"

    @property
    def target(self):
        return self.name

    def describe(self) -> str:
        return f"Would stop every running instance of {self.name}"

    def apply(self, toolbox, config, logger) -> ActionReport:
        toolbox.processes.stop(self.name)
        return ActionReport(f"Stopped {self.name}")


@dataclass(frozen=True)
class CopyPath(Action):
    source: str
    destination: str
    collision: str = COLLISION_SUFFIX

    kind = "copy_path"
    error_code = "copy_failed"

    @property
    def target(self):
        return self.source

    def describe(self) -> str:
        return f"Would copy {self.source} to {self.destination} (on collision: {self.collision})"

    def apply(self, toolbox, config, logger) -> ActionReport:
        report = toolbox.filesystem.copy(self.source, self.destination, collision=self.collision)
        return ActionReport(f"Copied {self.source} to {self.destination}: {report.describe()}")


@dataclass(frozen=True)
class MovePath(Action):
    source: str
    destination: str
    collision: str = COLLISION_NEWER

    kind = "move_path"
    error_code = "move_failed"
    destructive = True

    @property
    def target(self):
        return self.source

    @property
    def consumes(self):
        return self.source

    def describe(self) -> str:
        return f"Would move {self.source} into {self.destination} (on collision: {self.collision})"

    def apply(self, toolbox, config, logger) -> ActionReport:
        report = toolbox.filesystem.move(self.source, self.destination, collision=self.collision)
        return ActionReport(f"Moved {self.source} into {self.destination}: {report.describe()}")


@dataclass(frozen=True)
class RetirePaths(Action):
    directory: str
    pattern: Optional[str] = None
    policy: FolderPolicy = FolderPolicy.DELETE

    kind = "retire_paths"
    error_code = "retire_failed"
    destructive = True

    @property
    def target(self):
        return self.directory if not self.pattern else f"{self.directory}\\{self.pattern}"

    @property
    def consumes(self):
        return self.directory

    def describe(self) -> str:
        verb = {FolderPolicy.DELETE: "delete", FolderPolicy.RENAME: "rename", FolderPolicy.NONE: "leave"}[self.policy]
        return f"Would {verb} {self.target}"

    def apply(self, toolbox, config, logger) -> ActionReport:
        if self.policy is FolderPolicy.NONE:
            return ActionReport(f"Left {self.target} in place (folder policy: none)")

        filesystem = toolbox.filesystem
        if self.pattern:
            paths = [str(path) for path in filesystem.glob(self.directory, self.pattern)]
        else:
            paths = [self.directory] if filesystem.exists(self.directory) else []

        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        handled = []
        for path in paths:
            if self.policy is FolderPolicy.DELETE:
                filesystem.delete(path)
                handled.append(path)
            else:
                handled.append(filesystem.rename_aside(path, stamp))
        verb = "Deleted" if self.policy is FolderPolicy.DELETE else "Renamed"
        return ActionReport(f"{verb} {len(handled)} path(s): {', '.join(handled) or 'none'}")


@dataclass(frozen=True)
class DeleteRegistry(Action):
    key: str
    value_name: Optional[str] = None

    kind = "delete_registry"
    error_code = "registry_delete_failed"
    destructive = True

    @property
    def target(self):
        return self.key if self.value_name is None else f"{self.key}\\{self.value_name}"

    def describe(self) -> str:
        if self.value_name is None:
            return f"Would delete registry key {self.key} and all subkeys"
        return f"Would delete registry value {self.target}"

    def apply(self, toolbox, config, logger) -> ActionReport:
        toolbox.registry.delete(self.key, self.value_name)
        return ActionReport(f"Deleted {self.target}")


@dataclass(frozen=True)
class SetRegistryValue(Action):
    key: str
    value_name: str
    value_type: str
    data: Any

    kind = "set_registry_value"
    error_code = "registry_set_failed"

    @property
    def target(self):
        return f"{self.key}\\{self.value_name}"

    def describe(self) -> str:
        return f"Would set {self.target} ({self.value_type}) to {self.data!r}"

    def apply(self, toolbox, config, logger) -> ActionReport:
        toolbox.registry.set(self.key, self.value_name, self.value_type, self.data)
        return ActionReport(f"Set {self.target} to {self.data!r}")


@dataclass(frozen=True)
class StartService(Action):
    name: str
    start_type: Optional[str] = None
    timeout: float = SERVICE_POLL_TIMEOUT_SECONDS

    kind = "start_service"
    error_code = "service_start_failed"

    @property
    def target(self):
        return self.name

    def describe(self) -> str:
        text = f"Would start service {self.name} and wait up to {self.timeout:.0f}s"
        if self.start_type:
            text = f"Would set {self.name} startup to {self.start_type}, start it and wait up to {self.timeout:.0f}s"
        return text

    def apply(self, toolbox, config, logger) -> ActionReport:
        services = toolbox.services
        if self.start_type:
            services.set_startup_type(self.name, self.start_type)
        if services.status(self.name) != "RUNNING":
            services.start(self.name)
        if not services.wait_for_status(self.name, "RUNNING", timeout=self.timeout):
            raise ActionFailed(
                f"Service {self.name} did not reach RUNNING within {self.timeout:.0f}s",
                code="service_start_failed",
            )
        return ActionReport(f"Service {self.name} is running")


Wait = Union[bool, float]


def _report_exit(command: str, exit_code: Optional[int], wait: Wait, success_codes: Tuple[int, ...]) -> ActionReport:
    if wait is False:
        return ActionReport(f"Launched {command} without waiting")
    if exit_code is None:
        return ActionReport(f"{command} still running after the bounded wait; outcome indeterminate")
    if exit_code not in success_codes:
        raise ActionFailed(f"{command} exited with code {exit_code}", code="installer_failed")
    reboot = exit_code in INSTALLER_REBOOT_CODES
    detail = f"{command} exited with code {exit_code}"
    if reboot:
        detail += " (reboot required)"
    return ActionReport(detail, reboot_required=reboot)


@dataclass(frozen=True)
class RunInstaller(Action):
    source: str
    arguments: Tuple[str, ...] = ()
    wait: Wait = True
    success_codes: Tuple[int, ...] = INSTALLER_SUCCESS_CODES
    sha256: Optional[str] = None

    kind = "run_installer"
    error_code = "installer_failed"

    @property
    def target(self):
        return self.source

    def describe(self) -> str:
        return f"Would install {self.source} {' '.join(self.arguments)}".rstrip()

    def apply(self, toolbox, config, logger) -> ActionReport:
        staging_dir = toolbox.staging_dir or tempfile.gettempdir()
        local_path = toolbox.downloads.fetch(self.source, staging_dir, expected_sha256=self.sha256)
        exit_code = toolbox.installer.install(local_path, self.arguments, wait=self.wait)
        return _report_exit(local_path, exit_code, self.wait, self.success_codes)


@dataclass(frozen=True)
class RunUninstaller(Action):
    product_code: str
    arguments: Tuple[str, ...] = ()
    wait: Wait = True
    success_codes: Tuple[int, ...] = INSTALLER_SUCCESS_CODES

    kind = "run_uninstaller"
    error_code = "installer_failed"
    destructive = True

    @property
    def target(self):
        return self.product_code

    def describe(self) -> str:
        return f"Would uninstall {self.product_code} through msiexec"

    def apply(self, toolbox, config, logger) -> ActionReport:
        exit_code = toolbox.installer.uninstall(self.product_code, self.arguments, wait=self.wait)
        return _report_exit(f"msiexec /x {self.product_code}", exit_code, self.wait, self.success_codes)


@dataclass(frozen=True)
class RunProgram(Action):
    command: Tuple[str, ...]
    wait: Wait = True
    success_codes: Tuple[int, ...] = (0,)

    kind = "run_program"
    error_code = "installer_failed"

    @property
    def target(self):
        return self.command[0] if self.command else None

    def describe(self) -> str:
        mode = "and wait" if self.wait is True else "without waiting" if self.wait is False else f"and wait up to {self.wait}s"
        return f"Would run {' '.join(self.command)} {mode}"

    def apply(self, toolbox, config, logger) -> ActionReport:
        exit_code = toolbox.installer.execute(list(self.command), wait=self.wait)
        return _report_exit(self.command[0], exit_code, self.wait, self.success_codes)


@dataclass(frozen=True)
class QueryEventLog(Action):
    log_name: str
    since_hours: float = 168
    provider: Optional[str] = None
    contains: Optional[str] = None

    kind = "query_event_log"
    error_code = "event_log_query_failed"

    @property
    def target(self):
        return self.log_name

    def describe(self) -> str:
        return f"Would query the {self.log_name} event log for the last {self.since_hours:g} hours"

    def _matches(self, event) -> bool:
        if self.provider and event.provider.lower() != self.provider.lower():
            return False
        if self.contains and self.contains.lower() not in event.message.lower():
            return False
        return True

    def apply(self, toolbox, config, logger) -> ActionReport:
        since = datetime.now() - timedelta(hours=self.since_hours)
        events = toolbox.event_log.query(self.log_name, since, self._matches)
        for event in events[:5]:
            logger.warning(f"{self.log_name} event {event.event_id} from {event.provider}: {event.message[:200]}")
        return ActionReport(f"{len(events)} matching event(s) in {self.log_name} in the last {self.since_hours:g} hours")


@dataclass(frozen=True)
class BackupTree(Action):
    source: str
    destination_root: str

    kind = "backup_tree"
    error_code = "backup_failed"

    @property
    def target(self):
        return self.source

    def describe(self) -> str:
        return f"Would back up {self.source} to {self.destination_root} after checking free space"

    def apply(self, toolbox, config, logger) -> ActionReport:
        manifest = BackupCollector(toolbox.filesystem, logger).backup(self.source, self.destination_root)
        if manifest is None:
            raise InsufficientResources(
                f"Insufficient space at {self.destination_root} to back up {self.source}; backup not started"
            )
        return ActionReport(
            f"Backed up {manifest.byte_size} bytes from {manifest.source_path} to {manifest.destination_path}"
        )


@dataclass(frozen=True)
class RestartComputer(Action):
    delay_seconds: int = 60

    kind = "restart_computer"
    error_code = "reboot_failed"

    def describe(self) -> str:
        return f"Would schedule a restart in {self.delay_seconds}s"

    def apply(self, toolbox, config, logger) -> ActionReport:
        toolbox.command_runner.run(
            [
                "shutdown.exe",
                "/r",
                "/t",
                str(self.delay_seconds),
                "/c",
                "Restart scheduled to finish endpoint remediation.",
            ],
            check=True,
            capture_output=True,
        )
        return ActionReport(f"Restart scheduled in {self.delay_seconds}s")


@dataclass(frozen=True)
class CollectFiles(Action):
    directory: str
    pattern: str
    destination_root: str

    kind = "collect_files"
    error_code = "backup_failed"

    @property
    def target(self):
        return f"{self.directory}\\{self.pattern}"

    def describe(self) -> str:
        return f"Would copy {self.target} into {self.destination_root}"

    def apply(self, toolbox, config, logger) -> ActionReport:
        files = [str(path) for path in toolbox.filesystem.glob(self.directory, self.pattern) if path.is_file()]
        manifest = BackupCollector(toolbox.filesystem, logger).collect(files, self.destination_root)
        if manifest is None:
            raise InsufficientResources(f"Insufficient space at {self.destination_root} to collect {self.target}")
        return ActionReport(f"Collected {len(files)} file(s) ({manifest.byte_size} bytes) into {self.destination_root}")
