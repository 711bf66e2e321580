"""Bundle of the OS facilities that steps act through."""

import logging
import subprocess
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests
from rich.console import Console

from endpointremediator.constants import COMMAND_TIMEOUT_SECONDS
from endpointremediator.services import elevation
from endpointremediator.services.command_runner import CommandRunner
from endpointremediator.services.download import DownloadService
from endpointremediator.services.event_log import EventLogService
from endpointremediator.services.filesystem import FileSystemService
from endpointremediator.services.installer import InstallerService
from endpointremediator.services.processes import ProcessControl
from endpointremediator.services.registry import WindowsRegistry
from endpointremediator.services.service_control import ServiceControl


@dataclass
class Toolbox:
    processes: Any
    registry: Any
    services: Any
    installer: Any
    event_log: Any
    filesystem: Any
    downloads: Any
    command_runner: Any
    is_admin: Callable[[], bool]
    staging_dir: Optional[str] = None


def build_default_toolbox(
    logger: logging.Logger,
    console: Optional[Console] = None,
    staging_dir: Optional[str] = None,
) -> Toolbox:
    """Wires the Windows-backed facilities."""
    runner = CommandRunner(logger=logger, subprocess_module=subprocess)
    blocking_runner = CommandRunner(
        logger=logger,
        default_timeout=COMMAND_TIMEOUT_SECONDS,
        subprocess_module=subprocess,
    )
    return Toolbox(
        processes=ProcessControl(blocking_runner),
        registry=WindowsRegistry(logger),
        services=ServiceControl(blocking_runner, logger),
        installer=InstallerService(runner, logger),
        event_log=EventLogService(blocking_runner),
        filesystem=FileSystemService(logger, console),
        downloads=DownloadService(logger, console, requests_module=requests),
        command_runner=blocking_runner,
        is_admin=elevation.is_admin,
        staging_dir=staging_dir,
    )
