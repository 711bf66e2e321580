"""Subprocess execution service for EndpointRemediator.

Windows console tools disagree on where they report errors (``sc.exe`` writes
to stdout, ``reg.exe`` and ``taskkill.exe`` to stderr) and emit text in the OEM
code page, so output is decoded leniently and failure messages fall back to
stdout when stderr is empty.
"""

import subprocess
from typing import List, Optional

from endpointremediator.errors import ActionFailed

# Keeps child console tools from flashing a window when run from a GUI session.
CREATE_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


def _failure_text(result: subprocess.CompletedProcess) -> str:
    for stream in (result.stderr, result.stdout):
        text = (stream or "").strip()
        if text:
            return text
    return ""


class CommandRunner:
    """Runs external commands with consistent error handling."""

    def __init__(self, logger, default_timeout: Optional[float] = None, subprocess_module=subprocess):
        self.logger = logger
        self.default_timeout = default_timeout
        self.subprocess = subprocess_module

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture_output: bool = False,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        cmd_str = " ".join(cmd)
        effective_timeout = timeout if timeout is not None else self.default_timeout
        self.logger.debug("Executing: %s", cmd_str)

        try:
            result = self.subprocess.run(
                cmd,
                capture_output=capture_output,
                timeout=effective_timeout,
                text=True,
                errors="replace",
                creationflags=CREATE_NO_WINDOW,
            )
        except FileNotFoundError as exc:
            raise ActionFailed(
                f"Required command not found: {cmd[0]}. This action needs the Windows system tools."
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise ActionFailed(f"Command timed out after {effective_timeout}s: {cmd_str}") from exc
        except OSError as exc:
            raise ActionFailed(f"Failed to execute command: {cmd_str}. {exc}") from exc

        if capture_output and result.stdout:
            self.logger.debug("Command output: %s", result.stdout.strip())

        if result.returncode == 0:
            return result

        message = f"Command failed ({result.returncode}): {cmd_str}"
        detail = _failure_text(result) if capture_output else ""
        if detail:
            message = f"{message}\n{detail}"

        if check:
            raise ActionFailed(message)

        self.logger.debug(message)
        return result

    def launch(self, cmd: List[str]):
        """Starts a process and returns its handle without waiting for it."""
        cmd_str = " ".join(cmd)
        self.logger.debug("Launching: %s", cmd_str)
        try:
            return self.subprocess.Popen(cmd, creationflags=CREATE_NO_WINDOW)
        except FileNotFoundError as exc:
            raise ActionFailed(f"Required command not found: {cmd[0]}.") from exc
        except OSError as exc:
            raise ActionFailed(f"Failed to launch command: {cmd_str}. {exc}") from exc

    def wait_bounded(self, process, timeout: float) -> Optional[int]:
        """Waits up to ``timeout`` seconds; returns the exit code or None if still running."""
        try:
            return process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            return None
