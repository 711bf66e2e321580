"""Built-in step sequences.

Every recipe reads its paths, product codes and service names from
``RunConfiguration.recipe_options`` and falls back to the defaults below.
"""

import os
from typing import Callable, Dict, List

from endpointremediator.constants import UNINSTALL_KEY_ROOTS
from endpointremediator.errors import RemediationError
from endpointremediator.models import FolderPolicy, RunConfiguration
from endpointremediator.services.actions import (
    BackupTree,
    CollectFiles,
    DeleteRegistry,
    MovePath,
    QueryEventLog,
    RestartComputer,
    RetirePaths,
    RunInstaller,
    RunProgram,
    RunUninstaller,
    SetRegistryValue,
    StartService,
    StopProcess,
)
from endpointremediator.services.filesystem import COLLISION_NEWER
from endpointremediator.services.preconditions import (
    Absent,
    Always,
    AnyOf,
    InstalledVersionBelow,
    MergePending,
    PathExists,
    ProcessRunning,
    RegistryKeyExists,
    RegistryValueDiffers,
    ServiceState,
)
from endpointremediator.services.step import Step

ONEDRIVE_NAMESPACE_CLSID = "{018D5C66-4533-4307-9B53-224DE2ED1FE6}"
DEFAULT_AGENT_SERVICES = ("BITS", "Winmgmt", "CcmExec")


def _env_path(name: str, *fallback: str) -> str:
    value = os.environ.get(name)
    if value:
        return value
    return os.path.join(os.path.expanduser("~"), *fallback)


def _as_tuple(value) -> tuple:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(value.split())
    return tuple(str(item) for item in value)


def uninstall_key(config: RunConfiguration, product_code: str) -> str:
    root = config.option("uninstall_key_root", UNINSTALL_KEY_ROOTS[0])
    return f"{root}\\{product_code}"


def build_app_install(config: RunConfiguration) -> List[Step]:
    installer = config.option("installer")
    if not installer:
        raise RemediationError("Recipe `app-install` needs the `installer` option (local path or HTTPS URL).")

    product_code = config.option("product_code")
    minimum_version = config.option("minimum_version")
    precondition = Always()
    if product_code and minimum_version:
        precondition = InstalledVersionBelow(uninstall_key(config, product_code), str(minimum_version))
    elif product_code:
        precondition = Absent(RegistryKeyExists(uninstall_key(config, product_code)))

    steps = [
        Step(
            name="install-application",
            action=RunInstaller(
                source=str(installer),
                arguments=_as_tuple(config.option("arguments")),
                sha256=config.option("sha256"),
            ),
            precondition=precondition,
            critical=True,
        )
    ]

    post_launch = _as_tuple(config.option("post_install_launch"))
    if post_launch:
        steps.append(
            Step(
                name="launch-post-install",
                action=RunProgram(command=post_launch, wait=False),
            )
        )
    return steps


def build_app_uninstall(config: RunConfiguration) -> List[Step]:
    product_code = config.option("product_code")
    if not product_code:
        raise RemediationError("Recipe `app-uninstall` needs the `product_code` option.")

    key = uninstall_key(config, product_code)
    steps = [
        Step(
            name=f"stop-{name.lower()}",
            action=StopProcess(name),
            precondition=ProcessRunning(name),
        )
        for name in _as_tuple(config.option("processes"))
    ]
    steps.append(
        Step(
            name="uninstall-application",
            action=RunUninstaller(product_code=product_code, arguments=_as_tuple(config.option("arguments"))),
            precondition=RegistryKeyExists(key),
            critical=True,
        )
    )
    steps.append(
        Step(
            name="remove-uninstall-entry",
            action=DeleteRegistry(key),
            precondition=RegistryKeyExists(key),
        )
    )
    return steps


def build_outlook_cache(config: RunConfiguration) -> List[Step]:
    office_version = config.option("office_version", "16.0")
    local_app_data = _env_path("LOCALAPPDATA", "AppData", "Local")
    outlook_dir = config.option("outlook_data_path", os.path.join(local_app_data, "Microsoft", "Outlook"))
    roam_cache = os.path.join(outlook_dir, "RoamCache")
    outlook_key = f"HKCU\\Software\\Microsoft\\Office\\{office_version}\\Outlook"

    steps = [
        Step(
            name="stop-outlook",
            action=StopProcess("OUTLOOK.EXE"),
            precondition=ProcessRunning("OUTLOOK.EXE"),
            critical=True,
            requires_admin=False,
        ),
        Step(
            name="query-outlook-crashes",
            action=QueryEventLog(
                log_name="Application",
                since_hours=float(config.option("event_window_hours", 168)),
                provider="Application Error",
                contains="OUTLOOK.EXE",
            ),
            requires_admin=False,
        ),
    ]

    if config.backup_path and not config.no_backup:
        steps.append(
            Step(
                name="collect-autocomplete",
                action=CollectFiles(roam_cache, "Stream_Autocomplete*.dat", config.backup_path),
                precondition=PathExists(roam_cache, "Stream_Autocomplete*.dat"),
                requires_admin=False,
            )
        )

    if config.folder_policy is not FolderPolicy.NONE:
        steps.append(
            Step(
                name="retire-ost-files",
                action=RetirePaths(outlook_dir, "*.ost", config.folder_policy),
                precondition=PathExists(outlook_dir, "*.ost"),
                requires_admin=False,
            )
        )
        steps.append(
            Step(
                name="retire-roamcache",
                action=RetirePaths(roam_cache, None, config.folder_policy),
                precondition=PathExists(roam_cache),
                requires_admin=False,
            )
        )

    steps.append(
        Step(
            name="clear-autodiscover-cache",
            action=RetirePaths(os.path.join(outlook_dir, "16"), "*AutoD*.xml", FolderPolicy.DELETE),
            precondition=PathExists(os.path.join(outlook_dir, "16"), "*AutoD*.xml"),
            requires_admin=False,
        )
    )
    steps.append(
        Step(
            name="reset-resiliency",
            action=DeleteRegistry(f"{outlook_key}\\Resiliency"),
            precondition=RegistryKeyExists(f"{outlook_key}\\Resiliency"),
            requires_admin=False,
        )
    )

    if config.option("restart_outlook", True):
        steps.append(
            Step(
                name="restart-outlook",
                action=RunProgram(command=("outlook.exe",), wait=False),
                precondition=Absent(ProcessRunning("OUTLOOK.EXE")),
                requires_admin=False,
            )
        )
    return steps


def _onedrive_setup_path() -> str:
    system_root = os.environ.get("SystemRoot", r"C:\Windows")
    wow64 = os.path.join(system_root, "SysWOW64", "OneDriveSetup.exe")
    if os.path.exists(wow64):
        return wow64
    return os.path.join(system_root, "System32", "OneDriveSetup.exe")


def build_onedrive_removal(config: RunConfiguration) -> List[Step]:
    profile = os.environ.get("USERPROFILE") or os.path.expanduser("~")
    local_app_data = _env_path("LOCALAPPDATA", "AppData", "Local")
    program_data = os.environ.get("ProgramData", r"C:\ProgramData")
    onedrive_dir = config.option("onedrive_path") or os.environ.get("OneDrive") or os.path.join(profile, "OneDrive")
    backup_enabled = not config.no_backup
    backup_root = config.backup_path or os.path.join(profile, "OneDrive-Backup")
    retire_folder = config.folder_policy is not FolderPolicy.NONE

    merges = []
    for folder in _as_tuple(config.option("migrate_folders", ("Documents", "Desktop", "Pictures"))):
        source = os.path.join(onedrive_dir, folder)
        destination = os.path.join(profile, folder)
        merges.append(
            Step(
                name=f"merge-{folder.lower()}",
                action=MovePath(source, destination, collision=COLLISION_NEWER),
                precondition=MergePending(source, destination, COLLISION_NEWER),
                requires_backup=backup_enabled,
            )
        )

    steps = [
        Step(
            name="stop-onedrive",
            action=StopProcess("OneDrive.exe"),
            precondition=ProcessRunning("OneDrive.exe"),
            critical=True,
        )
    ]

    if backup_enabled:
        # Only worth a copy while a merge or the folder retirement still has work to do.
        pending = [merge.precondition for merge in merges]
        if retire_folder:
            pending.append(PathExists(onedrive_dir))
        steps.append(
            Step(
                name="backup-onedrive",
                action=BackupTree(onedrive_dir, backup_root),
                precondition=AnyOf(tuple(pending)),
            )
        )

    steps.extend(merges)

    onedrive_exe = os.path.join(local_app_data, "Microsoft", "OneDrive", "OneDrive.exe")
    steps.extend(
        [
            Step(
                name="uninstall-onedrive",
                action=RunProgram(command=(_onedrive_setup_path(), "/uninstall"), wait=True),
                precondition=PathExists(onedrive_exe),
                critical=True,
            ),
            Step(
                name="remove-onedrive-appdata",
                action=RetirePaths(os.path.join(local_app_data, "Microsoft", "OneDrive"), None, FolderPolicy.DELETE),
                precondition=PathExists(os.path.join(local_app_data, "Microsoft", "OneDrive")),
            ),
            Step(
                name="remove-onedrive-programdata",
                action=RetirePaths(os.path.join(program_data, "Microsoft OneDrive"), None, FolderPolicy.DELETE),
                precondition=PathExists(os.path.join(program_data, "Microsoft OneDrive")),
            ),
            Step(
                name="disable-onedrive-sync",
                action=SetRegistryValue(
                    r"HKLM\SOFTWARE\Policies\Microsoft\Windows\OneDrive",
                    "DisableFileSyncNGSC",
                    "REG_DWORD",
                    1,
                ),
                precondition=RegistryValueDiffers(
                    r"HKLM\SOFTWARE\Policies\Microsoft\Windows\OneDrive",
                    "DisableFileSyncNGSC",
                    1,
                ),
            ),
            Step(
                name="remove-onedrive-run-entry",
                action=DeleteRegistry(r"HKCU\Software\Microsoft\Windows\CurrentVersion\Run", "OneDrive"),
                precondition=RegistryKeyExists(r"HKCU\Software\Microsoft\Windows\CurrentVersion\Run", "OneDrive"),
            ),
            Step(
                name="unpin-navigation-pane",
                action=SetRegistryValue(
                    f"HKCR\\CLSID\\{ONEDRIVE_NAMESPACE_CLSID}",
                    "System.IsPinnedToNameSpaceTree",
                    "REG_DWORD",
                    0,
                ),
                precondition=RegistryValueDiffers(
                    f"HKCR\\CLSID\\{ONEDRIVE_NAMESPACE_CLSID}",
                    "System.IsPinnedToNameSpaceTree",
                    0,
                ),
            ),
        ]
    )

    if retire_folder:
        steps.append(
            Step(
                name="retire-onedrive-folder",
                action=RetirePaths(onedrive_dir, None, config.folder_policy),
                precondition=PathExists(onedrive_dir),
                requires_backup=backup_enabled,
            )
        )

    changes = tuple(step.name for step in steps if step.name not in ("stop-onedrive", "backup-onedrive"))
    steps.extend(
        [
            Step(
                name="stop-explorer",
                action=StopProcess("explorer.exe"),
                precondition=ProcessRunning("explorer.exe"),
                only_after=changes,
                requires_admin=False,
            ),
            Step(
                name="restart-explorer",
                action=RunProgram(command=("explorer.exe",), wait=False),
                precondition=Absent(ProcessRunning("explorer.exe")),
                requires_admin=False,
            ),
        ]
    )

    if not config.no_reboot:
        steps.append(Step(name="schedule-restart", action=RestartComputer(delay_seconds=60), only_after=changes))
    return steps


def build_agent_service(config: RunConfiguration) -> List[Step]:
    services = _as_tuple(config.option("services", DEFAULT_AGENT_SERVICES))
    if not services:
        raise RemediationError("Recipe `agent-service` needs at least one service name.")
    start_type = config.option("start_type", "auto")
    timeout = float(config.option("timeout", 30))

    return [
        Step(
            name=f"start-{name.lower()}",
            action=StartService(name, start_type=start_type, timeout=timeout),
            precondition=ServiceState(name, "RUNNING", start_type),
            critical=index == len(services) - 1,
        )
        for index, name in enumerate(services)
    ]


RECIPES: Dict[str, Callable[[RunConfiguration], List[Step]]] = {
    "app-install": build_app_install,
    "app-uninstall": build_app_uninstall,
    "outlook-cache": build_outlook_cache,
    "onedrive-removal": build_onedrive_removal,
    "agent-service": build_agent_service,
}


def build_recipe(name: str, config: RunConfiguration) -> List[Step]:
    builder = RECIPES.get(name)
    if builder is None:
        raise RemediationError(f"Unknown recipe `{name}`. Available: {', '.join(sorted(RECIPES))}")
    return builder(config)
