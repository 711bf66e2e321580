"""Actionable error catalog for EndpointRemediator."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "step_failed": {
        "what": "Step `{step}` failed.",
        "next": "Review the session log for the captured error and re-run; completed steps are skipped.",
    },
    "process_stop_failed": {
        "what": "Could not stop process `{target}`.",
        "next": "Close `{target}` from Task Manager or sign the user out, then re-run.",
    },
    "copy_failed": {
        "what": "Copy of `{target}` did not complete.",
        "next": "Check permissions and free space at the destination, then copy `{target}` manually.",
    },
    "move_failed": {
        "what": "Move of `{target}` did not complete.",
        "next": "Check that no file under `{target}` is open, then move the remaining files manually.",
    },
    "retire_failed": {
        "what": "Could not delete or rename `{target}`.",
        "next": "Close applications holding files in `{target}` and remove it manually.",
    },
    "registry_delete_failed": {
        "what": "Registry entry `{target}` could not be removed.",
        "next": "Remove `{target}` manually with regedit from an elevated session.",
    },
    "registry_set_failed": {
        "what": "Registry value `{target}` could not be written.",
        "next": "Set `{target}` manually with regedit or deploy it through Group Policy.",
    },
    "service_start_failed": {
        "what": "Service `{target}` did not reach the running state.",
        "next": "Run `sc.exe query {target}` and inspect the System event log for service control errors.",
    },
    "installer_failed": {
        "what": "Installer `{target}` returned a failure exit code.",
        "next": "Re-run `{target}` with verbose MSI logging (`/l*v`) and inspect the log.",
    },
    "installer_indeterminate": {
        "what": "Installer `{target}` was still running when the wait expired.",
        "next": "Confirm in Programs and Features that `{target}` finished before re-running.",
    },
    "download_failed": {
        "what": "Installer payload `{target}` could not be downloaded.",
        "next": "Check network access to `{target}` or stage the installer locally.",
    },
    "event_log_query_failed": {
        "what": "Event log `{target}` could not be queried.",
        "next": "Open Event Viewer and review `{target}` manually.",
    },
    "backup_failed": {
        "what": "Backup of `{target}` did not complete.",
        "next": "Copy `{target}` to a safe location manually before re-running without `--no-backup`.",
    },
    "insufficient_space": {
        "what": "Not enough free space to back up `{target}`.",
        "next": "Free disk space or choose another `--backup-path`, then re-run.",
    },
    "reboot_failed": {
        "what": "A restart could not be scheduled.",
        "next": "Restart the computer manually to finish the remediation.",
    },
    "aborted_by_prior_failure": {
        "what": "The run stopped after critical step `{step}` failed.",
        "next": "Resolve the failure in `{step}` and re-run; completed steps are skipped.",
    },
    "backup_blocked": {
        "what": "Steps that depend on the backup were not run.",
        "next": "Make the backup succeed, or pass `--no-backup` if the data is already safe.",
    },
    "reboot_pending": {
        "what": "Changes were made that need a restart.",
        "next": "Restart the computer at the next maintenance window.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"


def has_error_code(code: str) -> bool:
    return code in _ERROR_MESSAGES
