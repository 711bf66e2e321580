"""End-of-run digest: counts, failures and follow-up recommendations."""

from typing import Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from endpointremediator.errors_catalog import actionable_error, has_error_code
from endpointremediator.models import RunState, RunSummary, StepOutcome, StepResult
from endpointremediator.services.runner import ABORTED_DETAIL, BACKUP_BLOCKED_DETAIL

_OUTCOME_STYLES = {
    StepOutcome.PERFORMED: "green",
    StepOutcome.PERFORMED_DRY_RUN: "cyan",
    StepOutcome.SKIPPED_NOT_NEEDED: "dim",
    StepOutcome.FAILED: "red",
}


class ReportSummarizer:
    """Builds the final digest from step results."""

    def summarize(
        self,
        results: Sequence[StepResult],
        state: RunState = RunState.COMPLETED,
        restart_scheduled: bool = False,
    ) -> RunSummary:
        counts: Dict[StepOutcome, int] = {outcome: 0 for outcome in StepOutcome}
        for result in results:
            counts[result.outcome] += 1

        failed = tuple(result for result in results if result.failed)
        recommendations: List[str] = []

        for result in failed:
            code = result.error_code if result.error_code and has_error_code(result.error_code) else "step_failed"
            recommendations.append(
                actionable_error(code, target=result.target or result.step_name, step=result.step_name)
            )

        if state is RunState.ABORTED:
            critical = next((result for result in failed if result.critical), None)
            recommendations.append(
                actionable_error(
                    "aborted_by_prior_failure",
                    step=critical.step_name if critical else "unknown",
                )
            )

        if any(result.detail == BACKUP_BLOCKED_DETAIL for result in results):
            recommendations.append(actionable_error("backup_blocked"))

        needs_reboot = any(
            result.reboot_required for result in results if result.outcome is StepOutcome.PERFORMED
        )
        if needs_reboot and not restart_scheduled:
            recommendations.append(actionable_error("reboot_pending"))

        return RunSummary(
            state=state,
            counts=counts,
            failed=failed,
            recommendations=tuple(dict.fromkeys(recommendations)),
        )

    def headline(self, summary: RunSummary) -> str:
        counts = summary.counts
        return (
            f"Run {summary.state.value}: {summary.total} step(s), "
            f"{counts[StepOutcome.PERFORMED]} performed, "
            f"{counts[StepOutcome.PERFORMED_DRY_RUN]} dry-run, "
            f"{counts[StepOutcome.SKIPPED_NOT_NEEDED]} skipped, "
            f"{counts[StepOutcome.FAILED]} failed"
        )

    def emit(
        self,
        summary: RunSummary,
        results: Sequence[StepResult],
        logger,
        console: Optional[Console] = None,
    ):
        logger.info(self.headline(summary))
        for result in summary.failed:
            logger.warning(f"Failed step {result.step_name}: {result.detail}")
        for recommendation in summary.recommendations:
            logger.warning(f"Recommendation: {recommendation}")

        if console is None:
            return

        table = Table(title="Remediation summary", show_lines=False)
        table.add_column("Step")
        table.add_column("Outcome")
        table.add_column("Detail", overflow="fold")
        for result in results:
            style = _OUTCOME_STYLES[result.outcome]
            detail = result.detail if result.detail != ABORTED_DETAIL else f"[dim]{ABORTED_DETAIL}[/dim]"
            table.add_row(result.step_name, f"[{style}]{result.outcome.value}[/{style}]", detail)
        console.print(table)
        console.print(f"[bold]{self.headline(summary)}[/bold]")
