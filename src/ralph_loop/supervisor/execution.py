"""Execution phase: one agent run that performs the assigned work."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from ralph_loop.config import Settings
from ralph_loop.supervisor.backend import AgentInvoker, AgentRunRequest, BackendRunError
from ralph_loop.supervisor.failure_classifier import (
    process_error_diagnostic,
    start_error_diagnostic,
)
from ralph_loop.supervisor.models import (
    Assignment,
    Diagnostic,
    DiagnosticCategory,
    IterationOutcome,
    PhaseResult,
)
from ralph_loop.supervisor.prompts import build_workflow_prompt

logger = logging.getLogger(__name__)


def execution_timeout(
    iteration_seconds: int,
    orchestration_elapsed_seconds: int,
    minimum_seconds: int = 600,
) -> int:
    """Whatever the orchestration phase left of the budget, never below the floor."""

    return max(minimum_seconds, iteration_seconds - orchestration_elapsed_seconds)


class ExecutionPhase:
    """Runs the workflow once; failures here are not retried."""

    def __init__(
        self,
        *,
        settings: Settings,
        invoker: AgentInvoker,
        disallowed_tools: tuple[str, ...] = (),
    ) -> None:
        self.settings = settings
        self.invoker = invoker
        self.disallowed_tools = disallowed_tools

    def run(
        self,
        *,
        assignment: Assignment,
        execute_content: str,
        orchestration_elapsed_seconds: int,
        log_path: Path,
        shutdown_requested: Callable[[], bool] | None = None,
    ) -> PhaseResult:
        timeout_seconds = execution_timeout(
            self.settings.timeouts.iteration_seconds,
            orchestration_elapsed_seconds,
            self.settings.timeouts.min_execution_seconds,
        )
        logger.info(
            "Executing workflow for task %s (timeout %ss)",
            assignment.task_id,
            timeout_seconds,
        )
        request = AgentRunRequest(
            prompt=build_workflow_prompt(assignment, execute_content),
            timeout_seconds=timeout_seconds,
            log_path=log_path,
            working_dir=self.settings.project_root,
            command_template=self.settings.agent.command_template,
            disallowed_tools=self.disallowed_tools,
            echo_output=self.settings.agent.echo_output,
            shutdown_requested=shutdown_requested,
            graceful_shutdown_seconds=self.settings.timeouts.graceful_shutdown_seconds,
        )

        try:
            result = self.invoker.invoke(request)
        except BackendRunError as error:
            logger.error("Workflow execution could not start: %s", error)
            return PhaseResult(
                outcome=IterationOutcome.PROCESS_ERROR,
                attempts=1,
                assignment=assignment,
                diagnostic=start_error_diagnostic(str(error)),
                timeout_seconds=timeout_seconds,
            )

        if result.succeeded:
            outcome = IterationOutcome.SUCCESS
            diagnostic = None
        elif result.timed_out:
            logger.error("Workflow execution timed out")
            outcome = IterationOutcome.TIMEOUT
            diagnostic = Diagnostic(
                category=DiagnosticCategory.TIMEOUT,
                summary=f"Workflow execution timed out after {timeout_seconds} seconds.",
                value=str(timeout_seconds),
            )
        else:
            logger.error("Workflow execution failed with exit code: %s", result.exit_code)
            outcome = IterationOutcome.PROCESS_ERROR
            diagnostic = process_error_diagnostic(result)

        return PhaseResult(
            outcome=outcome,
            attempts=1,
            assignment=assignment,
            diagnostic=diagnostic,
            timeout_seconds=timeout_seconds,
        )
