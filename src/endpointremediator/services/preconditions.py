"""Precondition variants and the checker that evaluates them.

Each variant is a small frozen dataclass. ``PreconditionChecker`` dispatches on
the variant type through a registration table, so a new kind of check is added
by defining a dataclass and registering one method for it.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple, Type

from packaging import version

from endpointremediator.models import Presence
from endpointremediator.services.filesystem import COLLISION_NEWER


@dataclass(frozen=True)
class Always:
    """The step always has work to do (installers, diagnostics)."""


@dataclass(frozen=True)
class ProcessRunning:
    name: str


@dataclass(frozen=True)
class PathExists:
    path: str
    pattern: Optional[str] = None


@dataclass(frozen=True)
class MergePending:
    """Some file under ``source`` would still be written into ``destination``."""

    source: str
    destination: str
    collision: str = COLLISION_NEWER


@dataclass(frozen=True)
class RegistryKeyExists:
    key: str
    value_name: Optional[str] = None


@dataclass(frozen=True)
class RegistryValueDiffers:
    key: str
    value_name: str
    desired: Any


@dataclass(frozen=True)
class ServiceState:
    name: str
    desired_status: str = "RUNNING"
    desired_start_type: Optional[str] = None


@dataclass(frozen=True)
class InstalledVersionBelow:
    key: str
    minimum: str


@dataclass(frozen=True)
class Absent:
    inner: Any


@dataclass(frozen=True)
class AnyOf:
    options: Tuple[Any, ...]


def describe_precondition(precondition) -> str:
    if isinstance(precondition, Always):
        return "always"
    if isinstance(precondition, Absent):
        return f"not ({describe_precondition(precondition.inner)})"
    if isinstance(precondition, AnyOf):
        return " or ".join(describe_precondition(option) for option in precondition.options) or "nothing"
    fields = ", ".join(f"{key}={value!r}" for key, value in vars(precondition).items() if value is not None)
    return f"{type(precondition).__name__}({fields})"


def _parse_version(raw: Any) -> version.Version:
    try:
        return version.parse(str(raw).strip())
    except version.InvalidVersion:
        return version.parse("0")


class PreconditionChecker:
    """Answers whether a step's action is still needed."""

    def __init__(self, toolbox):
        self.toolbox = toolbox
        self._handlers: Dict[Type, Callable[[Any], Presence]] = {
            Always: self._check_always,
            ProcessRunning: self._check_process,
            PathExists: self._check_path,
            MergePending: self._check_merge,
            RegistryKeyExists: self._check_registry_key,
            RegistryValueDiffers: self._check_registry_value,
            ServiceState: self._check_service,
            InstalledVersionBelow: self._check_installed_version,
            Absent: self._check_absent,
            AnyOf: self._check_any,
        }

    def register(self, variant: Type, handler: Callable[[Any], Presence]):
        self._handlers[variant] = handler

    def check(self, precondition) -> Presence:
        handler = self._handlers.get(type(precondition))
        if handler is None:
            raise TypeError(f"No precondition handler registered for {type(precondition).__name__}")
        return handler(precondition)

    def _check_always(self, _precondition: Always) -> Presence:
        return Presence.PRESENT_AND_ACTIONABLE

    def _check_process(self, precondition: ProcessRunning) -> Presence:
        if self.toolbox.processes.is_running(precondition.name):
            return Presence.PRESENT_AND_ACTIONABLE
        return Presence.NOT_PRESENT

    def _check_path(self, precondition: PathExists) -> Presence:
        if precondition.pattern:
            found = bool(self.toolbox.filesystem.glob(precondition.path, precondition.pattern))
        else:
            found = self.toolbox.filesystem.exists(precondition.path)
        return Presence.PRESENT_AND_ACTIONABLE if found else Presence.NOT_PRESENT

    def _check_merge(self, precondition: MergePending) -> Presence:
        filesystem = self.toolbox.filesystem
        if not filesystem.exists(precondition.source):
            return Presence.NOT_PRESENT
        if filesystem.pending_transfers(precondition.source, precondition.destination, precondition.collision):
            return Presence.PRESENT_AND_ACTIONABLE
        return Presence.PRESENT_BUT_SKIP

    def _check_registry_key(self, precondition: RegistryKeyExists) -> Presence:
        registry = self.toolbox.registry
        if precondition.value_name is None:
            found = registry.key_exists(precondition.key)
        else:
            found = registry.value_exists(precondition.key, precondition.value_name)
        return Presence.PRESENT_AND_ACTIONABLE if found else Presence.NOT_PRESENT

    def _check_registry_value(self, precondition: RegistryValueDiffers) -> Presence:
        current = self.toolbox.registry.get(precondition.key, precondition.value_name)
        if current is not None and current == precondition.desired:
            return Presence.PRESENT_BUT_SKIP
        return Presence.PRESENT_AND_ACTIONABLE

    def _check_service(self, precondition: ServiceState) -> Presence:
        services = self.toolbox.services
        status = services.status(precondition.name)
        if status is None:
            return Presence.NOT_PRESENT
        if status != precondition.desired_status.upper():
            return Presence.PRESENT_AND_ACTIONABLE
        if precondition.desired_start_type and services.startup_type(precondition.name) != precondition.desired_start_type:
            return Presence.PRESENT_AND_ACTIONABLE
        return Presence.PRESENT_BUT_SKIP

    def _check_installed_version(self, precondition: InstalledVersionBelow) -> Presence:
        registry = self.toolbox.registry
        if not registry.key_exists(precondition.key):
            return Presence.PRESENT_AND_ACTIONABLE
        installed = _parse_version(registry.get(precondition.key, "DisplayVersion", "0"))
        if installed >= _parse_version(precondition.minimum):
            return Presence.PRESENT_BUT_SKIP
        return Presence.PRESENT_AND_ACTIONABLE

    def _check_absent(self, precondition: Absent) -> Presence:
        inner = self.check(precondition.inner)
        if inner is Presence.PRESENT_AND_ACTIONABLE:
            return Presence.NOT_PRESENT
        if inner is Presence.NOT_PRESENT:
            return Presence.PRESENT_AND_ACTIONABLE
        return inner

    def _check_any(self, precondition: AnyOf) -> Presence:
        answers = [self.check(option) for option in precondition.options]
        if Presence.PRESENT_AND_ACTIONABLE in answers:
            return Presence.PRESENT_AND_ACTIONABLE
        if Presence.PRESENT_BUT_SKIP in answers:
            return Presence.PRESENT_BUT_SKIP
        return Presence.NOT_PRESENT
