"""Shared domain models for EndpointRemediator."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")


class LogLevel(Enum):
    INFO = logging.INFO
    SUCCESS = SUCCESS
    WARNING = logging.WARNING
    ERROR = logging.ERROR

    @property
    def severity(self) -> int:
        return self.value


@dataclass(frozen=True)
class LogRecord:
    """One line of the session log."""

    timestamp: datetime
    level: LogLevel
    message: str

    def to_line(self) -> str:
        stamp = self.timestamp.isoformat(timespec="seconds")
        return f"{stamp} [{self.level.name}] {self.message}"


class StepOutcome(Enum):
    SKIPPED_NOT_NEEDED = "skipped"
    PERFORMED = "performed"
    PERFORMED_DRY_RUN = "dry-run"
    FAILED = "failed"


class Presence(Enum):
    NOT_PRESENT = "not-present"
    PRESENT_AND_ACTIONABLE = "actionable"
    PRESENT_BUT_SKIP = "skip"


class RunState(Enum):
    NOT_STARTED = "not-started"
    RUNNING = "running"
    ABORTED = "aborted"
    COMPLETED = "completed"


class FolderPolicy(Enum):
    NONE = "none"
    DELETE = "delete"
    RENAME = "rename"


@dataclass(frozen=True)
class StepResult:
    step_name: str
    outcome: StepOutcome
    detail: str = ""
    error_code: Optional[str] = None
    critical: bool = False
    target: Optional[str] = None
    reboot_required: bool = False

    @property
    def failed(self) -> bool:
        return self.outcome is StepOutcome.FAILED


@dataclass(frozen=True)
class BackupManifest:
    """Metadata describing a completed backup copy."""

    source_path: str
    destination_path: str
    byte_size: int
    free_space: int


def _frozen_mapping(value: Optional[Mapping[str, Any]]) -> Mapping[str, Any]:
    return MappingProxyType(dict(value or {}))


@dataclass(frozen=True)
class RunConfiguration:
    """Options supplied once at start; immutable for the duration of the run."""

    dry_run: bool = False
    silent: bool = False
    backup_path: Optional[str] = None
    no_backup: bool = False
    no_reboot: bool = False
    folder_policy: FolderPolicy = FolderPolicy.NONE
    criticality_overrides: Mapping[str, bool] = field(default_factory=dict)
    recipe_options: Mapping[str, Any] = field(default_factory=dict)
    log_dir: Optional[str] = None
    run_id: str = ""

    def __post_init__(self):
        object.__setattr__(self, "criticality_overrides", _frozen_mapping(self.criticality_overrides))
        object.__setattr__(self, "recipe_options", _frozen_mapping(self.recipe_options))

    def option(self, key: str, default: Any = None) -> Any:
        return self.recipe_options.get(key, default)


@dataclass(frozen=True)
class RunSummary:
    state: RunState
    counts: Mapping[StepOutcome, int]
    failed: Tuple[StepResult, ...]
    recommendations: Tuple[str, ...]

    @property
    def total(self) -> int:
        return sum(self.counts.values())
