"""A named, preconditioned unit of remediation."""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from endpointremediator.errors import ActionFailed
from endpointremediator.models import Presence, StepOutcome, StepResult
from endpointremediator.services.preconditions import Always, describe_precondition


@dataclass(frozen=True)
class Step:
    name: str
    action: object
    precondition: object = field(default_factory=Always)
    critical: bool = False
    dry_run_text: Optional[str] = None
    requires_admin: bool = True
    requires_backup: bool = False
    only_after: Tuple[str, ...] = ()

    @property
    def destructive(self) -> bool:
        return bool(getattr(self.action, "destructive", False))

    def projection(self) -> str:
        return self.dry_run_text or self.action.describe()

    def _result(self, outcome: StepOutcome, detail: str, **kwargs) -> StepResult:
        return StepResult(
            step_name=self.name,
            outcome=outcome,
            detail=detail,
            critical=self.critical,
            target=self.action.target,
            **kwargs,
        )

    def execute(self, config, toolbox, checker, logger) -> StepResult:
        """Runs the step; never raises."""
        if config.dry_run:
            try:
                projection = self.projection()
            except Exception as exc:
                return self._result(
                    StepOutcome.FAILED,
                    f"Could not describe the action: {type(exc).__name__}: {exc}",
                    error_code=self.action.error_code,
                )
            logger.info(f"[DRY-RUN] {self.name}: {projection}")
            return self._result(StepOutcome.PERFORMED_DRY_RUN, projection)

        try:
            presence = checker.check(self.precondition)
        except Exception as exc:
            return self._result(
                StepOutcome.FAILED,
                f"Precondition check {describe_precondition(self.precondition)} failed: {exc}",
                error_code=self.action.error_code,
            )

        if presence is Presence.NOT_PRESENT:
            return self._result(
                StepOutcome.SKIPPED_NOT_NEEDED,
                f"Not needed: target not present ({describe_precondition(self.precondition)})",
            )
        if presence is Presence.PRESENT_BUT_SKIP:
            return self._result(
                StepOutcome.SKIPPED_NOT_NEEDED,
                f"Not needed: already in desired state ({describe_precondition(self.precondition)})",
            )

        try:
            report = self.action.apply(toolbox, config, logger)
        except ActionFailed as exc:
            return self._result(
                StepOutcome.FAILED,
                str(exc),
                error_code=exc.code or self.action.error_code,
            )
        except Exception as exc:
            return self._result(
                StepOutcome.FAILED,
                f"{type(exc).__name__}: {exc}",
                error_code=self.action.error_code,
            )

        return self._result(
            StepOutcome.PERFORMED,
            report.detail,
            reboot_required=report.reboot_required,
        )
