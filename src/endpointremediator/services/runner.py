"""Ordered execution of remediation steps."""

from dataclasses import replace
from typing import List, Sequence

from endpointremediator.errors import InsufficientPrivilege, RemediationError
from endpointremediator.models import RunState, StepOutcome, StepResult
from endpointremediator.services.actions import BackupTree
from endpointremediator.services.preconditions import PreconditionChecker
from endpointremediator.services.step import Step

ABORTED_DETAIL = "aborted by prior failure"
BACKUP_BLOCKED_DETAIL = "blocked: backup did not complete"
NOTHING_CHANGED_DETAIL = "Not needed: no earlier step it follows changed anything"


def _is_within(path: str, root: str) -> bool:
    normalized_path = path.replace("/", "\\").rstrip("\\").lower()
    normalized_root = root.replace("/", "\\").rstrip("\\").lower()
    return normalized_path == normalized_root or normalized_path.startswith(normalized_root + "\\")


class RemediationRunner:
    """Executes steps in declaration order and stops on a failed critical step."""

    def __init__(self, toolbox, logger, checker=None):
        self.toolbox = toolbox
        self.logger = logger
        self.checker = checker or PreconditionChecker(toolbox)
        self.state = RunState.NOT_STARTED
        self.aborted_by = None

    def validate(self, steps: Sequence[Step]):
        names = [step.name for step in steps]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise RemediationError(f"Duplicate step names: {', '.join(duplicates)}")

        backed_up: List[str] = []
        for position, step in enumerate(steps):
            unknown_after = sorted(set(step.only_after) - set(names[:position]))
            if unknown_after:
                raise RemediationError(
                    f"Step `{step.name}` follows steps that do not run before it: {', '.join(unknown_after)}"
                )

            if isinstance(step.action, BackupTree):
                backed_up.append(step.action.source)
                continue
            if step.requires_backup and not backed_up:
                raise RemediationError(f"Step `{step.name}` requires a backup but no backup step precedes it.")

            consumed = getattr(step.action, "consumes", None)
            if not consumed:
                continue
            later_backup = next(
                (
                    later
                    for later in steps[position + 1:]
                    if isinstance(later.action, BackupTree) and _is_within(consumed, later.action.source)
                ),
                None,
            )
            if later_backup is not None:
                raise RemediationError(
                    f"Destructive step `{step.name}` runs before backup step `{later_backup.name}` of the same source."
                )

    def check_privilege(self, steps: Sequence[Step], config):
        if config.dry_run or not any(step.requires_admin for step in steps):
            return
        if not self.toolbox.is_admin():
            self.logger.error("InsufficientPrivilege: administrative rights are required; no step was run.")
            raise InsufficientPrivilege("Administrative rights are required. Re-run from an elevated prompt.")

    def _apply_overrides(self, steps: Sequence[Step], config) -> List[Step]:
        overrides = config.criticality_overrides
        unknown = sorted(set(overrides) - {step.name for step in steps})
        if unknown:
            self.logger.warning(f"Criticality overrides for unknown steps ignored: {', '.join(unknown)}")
        return [
            replace(step, critical=bool(overrides[step.name])) if step.name in overrides else step
            for step in steps
        ]

    def _log_result(self, result: StepResult):
        message = f"{result.step_name}: {result.detail}"
        if result.outcome is StepOutcome.PERFORMED:
            self.logger.success(message)
        elif result.outcome is StepOutcome.FAILED:
            prefix = "CRITICAL " if result.critical else ""
            self.logger.error(f"{prefix}FAILED {message}")
        else:
            self.logger.info(message)

    def run(self, steps: Sequence[Step], config) -> List[StepResult]:
        steps = self._apply_overrides(steps, config)
        self.validate(steps)
        self.check_privilege(steps, config)

        self.state = RunState.RUNNING
        self.aborted_by = None
        results: List[StepResult] = []
        backup_failed = False
        changed = set()

        for index, step in enumerate(steps, start=1):
            if self.state is RunState.ABORTED:
                result = StepResult(
                    step_name=step.name,
                    outcome=StepOutcome.SKIPPED_NOT_NEEDED,
                    detail=ABORTED_DETAIL,
                    error_code="aborted_by_prior_failure",
                    critical=step.critical,
                    target=step.action.target,
                )
                results.append(result)
                self._log_result(result)
                continue

            if step.requires_backup and backup_failed and not config.dry_run:
                result = StepResult(
                    step_name=step.name,
                    outcome=StepOutcome.SKIPPED_NOT_NEEDED,
                    detail=BACKUP_BLOCKED_DETAIL,
                    error_code="backup_blocked",
                    critical=step.critical,
                    target=step.action.target,
                )
                results.append(result)
                self._log_result(result)
                continue

            if step.only_after and not changed.intersection(step.only_after):
                result = StepResult(
                    step_name=step.name,
                    outcome=StepOutcome.SKIPPED_NOT_NEEDED,
                    detail=NOTHING_CHANGED_DETAIL,
                    critical=step.critical,
                    target=step.action.target,
                )
                results.append(result)
                self._log_result(result)
                continue

            self.logger.info(f"[{index}/{len(steps)}] {step.name}")
            result = step.execute(config, self.toolbox, self.checker, self.logger)
            results.append(result)
            self._log_result(result)
            if result.outcome in (StepOutcome.PERFORMED, StepOutcome.PERFORMED_DRY_RUN):
                changed.add(step.name)

            if isinstance(step.action, BackupTree) and result.failed:
                backup_failed = True

            if result.failed and step.critical:
                self.state = RunState.ABORTED
                self.aborted_by = step.name
                self.logger.error(f"Critical step `{step.name}` failed; remaining steps will not run.")

        if self.state is RunState.RUNNING:
            self.state = RunState.COMPLETED
        return results
