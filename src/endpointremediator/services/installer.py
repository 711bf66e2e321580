"""Installer execution facility."""

from pathlib import Path
from typing import List, Optional, Sequence, Union

from endpointremediator.constants import INSTALLER_BOUNDED_WAIT_SECONDS

DEFAULT_MSI_ARGUMENTS = ("/qn", "/norestart")

WaitMode = Union[bool, float]


class InstallerService:
    """Runs installers and uninstallers, blocking, bounded or fire-and-forget."""

    def __init__(self, command_runner, logger):
        self.command_runner = command_runner
        self.logger = logger

    def build_install_command(self, path: str, arguments: Sequence[str] = ()) -> List[str]:
        if Path(path).suffix.lower() == ".msi":
            return ["msiexec.exe", "/i", path] + list(arguments or DEFAULT_MSI_ARGUMENTS)
        return [path] + list(arguments)

    def build_uninstall_command(self, product_code: str, arguments: Sequence[str] = ()) -> List[str]:
        return ["msiexec.exe", "/x", product_code] + list(arguments or DEFAULT_MSI_ARGUMENTS)

    def execute(self, cmd: List[str], wait: WaitMode = True) -> Optional[int]:
        """Returns the exit code, or None when the process was left running."""
        if wait is True:
            result = self.command_runner.run(cmd, check=False)
            return result.returncode

        process = self.command_runner.launch(cmd)
        if wait is False:
            self.logger.debug("Launched %s without waiting", cmd[0])
            return None

        timeout = float(wait) if wait else INSTALLER_BOUNDED_WAIT_SECONDS
        exit_code = self.command_runner.wait_bounded(process, timeout)
        if exit_code is None:
            self.logger.warning("%s still running after %.0fs; continuing", cmd[0], timeout)
        return exit_code

    def install(self, path: str, arguments: Sequence[str] = (), wait: WaitMode = True) -> Optional[int]:
        return self.execute(self.build_install_command(path, arguments), wait=wait)

    def uninstall(self, product_code: str, arguments: Sequence[str] = (), wait: WaitMode = True) -> Optional[int]:
        return self.execute(self.build_uninstall_command(product_code, arguments), wait=wait)
