"""One iteration: orchestration followed by execution."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path

from ralph_loop.config import Settings
from ralph_loop.supervisor.backend import AgentInvoker
from ralph_loop.supervisor.backend.cli_backend import build_disallowed_tools
from ralph_loop.supervisor.contracts import remove_assignment
from ralph_loop.supervisor.execution import ExecutionPhase
from ralph_loop.supervisor.models import (
    EXPECTED_ASSIGNMENT_SHAPE,
    Diagnostic,
    DiagnosticCategory,
    IterationOutcome,
    IterationReport,
)
from ralph_loop.supervisor.orchestration import OrchestrationPhase
from ralph_loop.supervisor.prompts import OrchestratePromptBuilder
from ralph_loop.supervisor.retention import LOG_SUFFIX

logger = logging.getLogger(__name__)

_BANNER = "=" * 60


def iteration_log_path(log_dir: Path, now: datetime | None = None) -> Path:
    """Sortable ``<YYYYMMDDHHMMSS>.jsonl`` path that does not exist yet."""

    stamp = (now or datetime.now(tz=UTC)).strftime("%Y%m%d%H%M%S")
    candidate = log_dir / f"{stamp}{LOG_SUFFIX}"
    suffix = 1
    while candidate.exists():
        candidate = log_dir / f"{stamp}_{suffix:03d}{LOG_SUFFIX}"
        suffix += 1
    return candidate


class IterationController:
    """Sequences the two phases and classifies the iteration."""

    def __init__(self, *, settings: Settings, invoker: AgentInvoker) -> None:
        self.settings = settings
        self.invoker = invoker

    def run(
        self,
        *,
        shutdown_requested: Callable[[], bool] | None = None,
        log_path: Path | None = None,
    ) -> IterationReport:
        paths = self.settings.paths
        paths.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = log_path or iteration_log_path(paths.log_dir)
        logger.info("Starting two-phase orchestration for project %s", paths.project_name)
        logger.info("Log file: %s", log_path)

        if remove_assignment(paths.assignment_path):
            logger.info("Removed existing assignment file: %s", paths.assignment_path)

        prompt_builder = OrchestratePromptBuilder(
            paths,
            template_path=self.settings.agent.orchestrate_prompt_path,
        )
        config_error = self._check_inputs(prompt_builder)
        if config_error is not None:
            return self._fail(
                IterationReport(
                    outcome=IterationOutcome.PROCESS_ERROR,
                    log_path=log_path,
                    diagnostic=config_error,
                ),
            )

        disallowed_tools = build_disallowed_tools(paths.projects_dir, paths.project_name)
        orchestration = OrchestrationPhase(
            settings=self.settings,
            invoker=self.invoker,
            prompt_builder=prompt_builder,
            disallowed_tools=disallowed_tools,
        ).run(log_path=log_path, shutdown_requested=shutdown_requested)

        report = IterationReport(
            outcome=orchestration.outcome,
            log_path=log_path,
            orchestration=orchestration,
            diagnostic=orchestration.diagnostic,
        )
        if orchestration.outcome is IterationOutcome.NO_WORK_AVAILABLE:
            logger.info("No work available; the loop will retry after the configured delay")
            return report
        if orchestration.outcome is not IterationOutcome.SUCCESS:
            return self._fail(report)

        assignment = orchestration.assignment
        if assignment is None:  # pragma: no cover - SUCCESS always carries one
            raise RuntimeError("Orchestration succeeded without an assignment")

        if shutdown_requested is not None and shutdown_requested():
            logger.warning(
                "Shutdown requested; not starting execution for task %s",
                assignment.task_id,
            )
            report.outcome = IterationOutcome.PROCESS_ERROR
            report.diagnostic = Diagnostic(
                category=DiagnosticCategory.PROCESS_ERROR,
                summary="Iteration interrupted by shutdown request before execution.",
            )
            return report

        execution = ExecutionPhase(
            settings=self.settings,
            invoker=self.invoker,
            disallowed_tools=disallowed_tools,
        ).run(
            assignment=assignment,
            execute_content=paths.execute_path.read_text("utf-8"),
            orchestration_elapsed_seconds=orchestration.attempts * orchestration.timeout_seconds,
            log_path=log_path,
            shutdown_requested=shutdown_requested,
        )
        report.execution = execution
        report.outcome = execution.outcome
        report.diagnostic = execution.diagnostic
        if execution.outcome.is_failure:
            return self._fail(report)

        logger.info(
            "Two-phase orchestration completed: attempts=%d task=%s",
            orchestration.attempts,
            assignment.task_id,
        )
        return report

    def _check_inputs(self, prompt_builder: OrchestratePromptBuilder) -> Diagnostic | None:
        paths = self.settings.paths
        if not paths.execute_path.is_file():
            return Diagnostic(
                category=DiagnosticCategory.CONFIGURATION,
                summary=(
                    f"Execute file not found for project '{paths.project_name}': "
                    f"{paths.execute_path}"
                ),
                guidance=(
                    "Run 'ralph init' or create "
                    f".ralph/projects/{paths.project_name}/execute.md"
                ),
            )
        if not prompt_builder.template_exists():
            return Diagnostic(
                category=DiagnosticCategory.CONFIGURATION,
                summary=f"Orchestrate prompt not found: {prompt_builder.template_path}",
            )
        return None

    def _fail(self, report: IterationReport) -> IterationReport:
        lines = [
            _BANNER,
            f"Iteration failed: {report.outcome.value}",
            _BANNER,
        ]
        if report.outcome is IterationOutcome.VALIDATION_EXHAUSTED:
            lines.append(
                "The orchestration process was unable to produce a valid assignment "
                f"after {self.settings.loop.max_orchestration_attempts} attempts.",
            )
            lines.append(f"Expected file location: {self.settings.paths.assignment_path}")
            lines.append(f"Expected JSON structure:\n{EXPECTED_ASSIGNMENT_SHAPE}")
        if report.diagnostic is not None:
            lines.append("Last error:")
            lines.append("-" * 60)
            lines.append(report.diagnostic.render())
            lines.append("-" * 60)
        lines.append(f"Iteration log: {report.log_path}")
        lines.append(_BANNER)
        logger.error("\n".join(lines))
        return report
