"""Loads custom step sequences from YAML plan files."""

import dataclasses
import os
import typing
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml

from endpointremediator.errors import RemediationError
from endpointremediator.services import actions, preconditions
from endpointremediator.services.step import Step

ACTION_TYPES = {
    cls.kind: cls
    for cls in (
        actions.StopProcess,
        actions.CopyPath,
        actions.MovePath,
        actions.RetirePaths,
        actions.DeleteRegistry,
        actions.SetRegistryValue,
        actions.StartService,
        actions.RunInstaller,
        actions.RunUninstaller,
        actions.RunProgram,
        actions.QueryEventLog,
        actions.BackupTree,
        actions.CollectFiles,
        actions.RestartComputer,
    )
}

PRECONDITION_TYPES = {
    "always": preconditions.Always,
    "process_running": preconditions.ProcessRunning,
    "path_exists": preconditions.PathExists,
    "registry_key_exists": preconditions.RegistryKeyExists,
    "registry_value_differs": preconditions.RegistryValueDiffers,
    "service_state": preconditions.ServiceState,
    "installed_version_below": preconditions.InstalledVersionBelow,
    "absent": preconditions.Absent,
    "any_of": preconditions.AnyOf,
    "merge_pending": preconditions.MergePending,
}

_STEP_KEYS = {
    "name",
    "action",
    "precondition",
    "critical",
    "dry_run_text",
    "requires_admin",
    "requires_backup",
    "only_after",
}


def _expand(value: Any) -> Any:
    if isinstance(value, str):
        return os.path.expandvars(value)
    if isinstance(value, list):
        return [_expand(item) for item in value]
    return value


def _coerce(value: Any, annotation: Any) -> Any:
    """Converts a YAML value to a dataclass field type; raises ValueError when it cannot."""
    if annotation is Any:
        return value
    origin = typing.get_origin(annotation)
    if origin is Union:
        if value is None and type(None) in typing.get_args(annotation):
            return None
        for option in typing.get_args(annotation):
            if option is type(None):
                continue
            try:
                return _coerce(value, option)
            except (TypeError, ValueError):
                continue
        raise ValueError(f"expected one of {annotation}")
    if origin is tuple:
        item_type = typing.get_args(annotation)[0]
        items = [value] if isinstance(value, str) else value
        if not isinstance(items, (list, tuple)):
            raise ValueError("expected a list")
        return tuple(_coerce(item, item_type) for item in items)
    if annotation is bool:
        if not isinstance(value, bool):
            raise ValueError("expected true or false")
        return value
    if annotation in (int, float):
        if isinstance(value, bool):
            raise ValueError(f"expected {annotation.__name__}")
        return annotation(value)
    if annotation is str:
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ValueError("expected text")
        return str(value)
    if isinstance(annotation, type) and issubclass(annotation, Enum):
        return annotation(str(value).lower())
    return value


def _build(kind_table: Dict[str, type], entry: Any, label: str):
    if not isinstance(entry, dict) or "type" not in entry:
        raise RemediationError(f"{label} must be a mapping with a `type` key.")
    params = dict(entry)
    kind = params.pop("type")
    cls = kind_table.get(kind)
    if cls is None:
        raise RemediationError(f"Unknown {label} type: {kind}")

    field_types = {item.name: item.type for item in dataclasses.fields(cls)}
    allowed = set(field_types)
    unknown = sorted(set(params) - allowed)
    if unknown:
        raise RemediationError(f"Unknown fields for {label} `{kind}`: {', '.join(unknown)}")

    converted: Dict[str, Any] = {}
    for key, value in params.items():
        value = _expand(value)
        if key == "inner":
            value = _build(PRECONDITION_TYPES, value, "precondition")
        elif key == "options":
            if not isinstance(value, list):
                raise RemediationError(f"Field `options` of {label} `{kind}` must be a list of preconditions.")
            value = tuple(_build(PRECONDITION_TYPES, item, "precondition") for item in value)
        else:
            try:
                value = _coerce(value, field_types[key])
            except (TypeError, ValueError) as exc:
                raise RemediationError(f"Invalid value for `{key}` of {label} `{kind}`: {value!r} ({exc})") from exc
        converted[key] = value

    try:
        return cls(**converted)
    except TypeError as exc:
        raise RemediationError(f"Invalid {label} `{kind}`: {exc}") from exc


def _step_field(raw: Dict[str, Any], key: str, annotation: Any, default: Any) -> Any:
    value = raw.get(key, default)
    try:
        return _coerce(value, annotation)
    except (TypeError, ValueError) as exc:
        raise RemediationError(f"Invalid value for `{key}` of plan step `{raw['name']}`: {value!r} ({exc})") from exc


def parse_plan(data: Any) -> Tuple[str, List[Step]]:
    if not isinstance(data, dict) or not isinstance(data.get("steps"), list):
        raise RemediationError("Plan file must be a mapping with a `steps` list.")

    steps: List[Step] = []
    for index, raw in enumerate(data["steps"], start=1):
        if not isinstance(raw, dict) or "name" not in raw or "action" not in raw:
            raise RemediationError(f"Plan step #{index} needs at least `name` and `action`.")
        unknown = sorted(set(raw) - _STEP_KEYS)
        if unknown:
            raise RemediationError(f"Unknown keys in plan step `{raw['name']}`: {', '.join(unknown)}")

        precondition = preconditions.Always()
        if raw.get("precondition") is not None:
            precondition = _build(PRECONDITION_TYPES, raw["precondition"], "precondition")

        steps.append(
            Step(
                name=str(raw["name"]),
                action=_build(ACTION_TYPES, raw["action"], "action"),
                precondition=precondition,
                critical=_step_field(raw, "critical", bool, False),
                dry_run_text=_step_field(raw, "dry_run_text", Optional[str], None),
                requires_admin=_step_field(raw, "requires_admin", bool, True),
                requires_backup=_step_field(raw, "requires_backup", bool, False),
                only_after=_step_field(raw, "only_after", Tuple[str, ...], ()),
            )
        )
    return str(data.get("name") or "plan"), steps


def load_plan(plan_path: str) -> Tuple[str, List[Step]]:
    path = Path(plan_path)
    if not path.exists():
        raise RemediationError(f"Plan file not found: {plan_path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (yaml.YAMLError, OSError) as exc:
        raise RemediationError(f"Invalid plan file '{plan_path}': {exc}") from exc
    return parse_plan(data)
