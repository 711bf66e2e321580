import logging
import os
import uuid
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from .constants import EXIT_ABORTED, EXIT_CANCELLED, EXIT_INSUFFICIENT_PRIVILEGE, EXIT_OK
from .errors import CriticalActionFailed, InsufficientPrivilege, RemediationError
from .models import RunConfiguration, RunState, StepOutcome, StepResult
from .recipes import RECIPES, build_recipe
from .services.actions import RestartComputer
from .services.plan_loader import load_plan
from .services.report import ReportSummarizer
from .services.run_record import RunRecordService
from .services.runner import RemediationRunner
from .services.session_log import SessionLogger, build_log_path, default_log_dir
from .services.step import Step
from .services.toolbox import Toolbox, build_default_toolbox

logger = logging.getLogger("endpointremediator")


class EndpointRemediator:
    RECIPE_NAMES = sorted(RECIPES)

    def __init__(
        self,
        config: RunConfiguration,
        recipe: Optional[str] = None,
        plan: Optional[str] = None,
        report_file: Optional[str] = None,
        console: Optional[Console] = None,
        toolbox: Optional[Toolbox] = None,
    ):
        if bool(recipe) == bool(plan):
            raise RemediationError("Provide exactly one of --recipe or --plan.")
        if recipe and recipe not in RECIPES:
            raise RemediationError(f"Unknown recipe `{recipe}`. Available: {', '.join(self.RECIPE_NAMES)}")

        self.recipe = recipe
        self.plan = plan
        self.label = recipe or Path(plan).stem
        self.config = config if config.run_id else replace(config, run_id=uuid.uuid4().hex[:10])
        self.report_file = report_file
        self.console = console or Console()
        self.toolbox = toolbox
        self.log_path = build_log_path(self.config.log_dir, self.label)
        self.staging_dir = os.path.join(self.config.log_dir or default_log_dir(), "staging", self.config.run_id)
        self._owns_staging = False
        self.summarizer = ReportSummarizer()

    def load_steps(self) -> List[Step]:
        if self.recipe:
            return build_recipe(self.recipe, self.config)
        _, steps = load_plan(self.plan)
        return steps

    def _build_toolbox(self) -> Toolbox:
        if self.toolbox is not None:
            return self.toolbox
        self.toolbox = build_default_toolbox(logger, console=self.console, staging_dir=self.staging_dir)
        self._owns_staging = True
        return self.toolbox

    @staticmethod
    def _restart_scheduled(steps: List[Step], results: List[StepResult]) -> bool:
        by_name = {step.name: step for step in steps}
        return any(
            result.outcome is StepOutcome.PERFORMED
            and isinstance(by_name[result.step_name].action, RestartComputer)
            for result in results
            if result.step_name in by_name
        )

    def run(self) -> int:
        session = SessionLogger(self.log_path, silent=self.config.silent)
        record = RunRecordService(record_file=self.report_file, logger=session)
        record.start_run(
            run_id=self.config.run_id,
            recipe=self.label,
            dry_run=self.config.dry_run,
            log_file=self.log_path,
        )
        record_status = "failed"
        record_error: Optional[str] = None
        exit_code = EXIT_ABORTED

        try:
            mode = " (dry-run)" if self.config.dry_run else ""
            session.info(f"Starting EndpointRemediator run {self.config.run_id}: {self.label}{mode}")
            logger.debug("Session log: %s", self.log_path)

            steps = self.load_steps()
            runner = RemediationRunner(self._build_toolbox(), session)
            results = runner.run(steps, self.config)

            summary = self.summarizer.summarize(
                results,
                state=runner.state,
                restart_scheduled=self._restart_scheduled(steps, results),
            )
            self.summarizer.emit(
                summary,
                results,
                session,
                console=None if self.config.silent else self.console,
            )
            record.add_results(results)
            record.set_summary(summary)

            record_status = summary.state.value
            if runner.state is RunState.ABORTED:
                raise CriticalActionFailed(
                    f"Critical step `{runner.aborted_by}` failed.",
                    code="aborted_by_prior_failure",
                )
            exit_code = EXIT_OK
            return exit_code

        except CriticalActionFailed as exc:
            record_error = str(exc)
            exit_code = EXIT_ABORTED
            return exit_code

        except KeyboardInterrupt:
            self.console.print("[bold red]Operation cancelled by user.[/bold red]")
            session.warning("Operation cancelled by user")
            record_status = "cancelled"
            record_error = "Operation cancelled by user."
            exit_code = EXIT_CANCELLED
            return exit_code
        except InsufficientPrivilege as exc:
            # The runner already wrote the single privilege record.
            self.console.print(f"[bold red]Error:[/bold red] {exc}")
            record_status = "insufficient_privilege"
            record_error = str(exc)
            exit_code = EXIT_INSUFFICIENT_PRIVILEGE
            return exit_code
        except RemediationError as exc:
            self.console.print(f"[bold red]Error:[/bold red] {exc}")
            session.error(str(exc))
            record_error = str(exc)
            exit_code = EXIT_ABORTED
            return exit_code
        except Exception as exc:
            self.console.print(f"[bold red]Unexpected error:[/bold red] {exc}")
            session.error(f"Unexpected error: {exc}")
            logger.exception("Unexpected error")
            record_error = str(exc)
            exit_code = EXIT_ABORTED
            return exit_code
        finally:
            record.finalize(record_status, error=record_error)
            if self._owns_staging:
                self.toolbox.filesystem.cleanup_dir(self.staging_dir)
            if session.write_failures:
                self.console.print(
                    f"[yellow]Warning:[/yellow] {session.write_failures} record(s) could not be "
                    f"written to {self.log_path}"
                )
            else:
                logger.info("Session log written to %s", self.log_path)
            session.close()
