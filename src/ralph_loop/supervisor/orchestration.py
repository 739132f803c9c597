"""Orchestration phase: obtain a validated assignment with bounded retries."""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

from ralph_loop.config import Settings
from ralph_loop.supervisor.backend import (
    AgentInvoker,
    AgentRunRequest,
    BackendRunError,
)
from ralph_loop.supervisor.contracts import remove_assignment
from ralph_loop.supervisor.failure_classifier import (
    process_error_diagnostic,
    start_error_diagnostic,
    timeout_diagnostic,
)
from ralph_loop.supervisor.models import (
    AssignmentState,
    Diagnostic,
    DiagnosticCategory,
    IterationOutcome,
    PhaseResult,
)
from ralph_loop.supervisor.prompts import OrchestratePromptBuilder
from ralph_loop.supervisor.validator import validate_assignment

logger = logging.getLogger(__name__)


def orchestration_attempt_timeout(
    iteration_seconds: int,
    max_attempts: int,
    minimum_seconds: int = 180,
) -> int:
    """Half the iteration budget, split across attempts, never below the floor."""

    return max(minimum_seconds, iteration_seconds // 2 // max_attempts)


class OrchestrationPhase:
    """Runs up to ``max_orchestration_attempts`` agent calls to get an assignment."""

    def __init__(
        self,
        *,
        settings: Settings,
        invoker: AgentInvoker,
        prompt_builder: OrchestratePromptBuilder,
        disallowed_tools: tuple[str, ...] = (),
    ) -> None:
        self.settings = settings
        self.invoker = invoker
        self.prompt_builder = prompt_builder
        self.disallowed_tools = disallowed_tools
        self.max_attempts = settings.loop.max_orchestration_attempts
        self.attempt_timeout = orchestration_attempt_timeout(
            settings.timeouts.iteration_seconds,
            self.max_attempts,
            settings.timeouts.min_orchestration_attempt_seconds,
        )

    def run(  # noqa: C901
        self,
        *,
        log_path: Path,
        shutdown_requested: Callable[[], bool] | None = None,
    ) -> PhaseResult:
        assignment_path = self.settings.paths.assignment_path
        logger.info("Timeout per orchestration attempt: %ss", self.attempt_timeout)
        previous: Diagnostic | None = None

        for attempt in range(1, self.max_attempts + 1):
            if shutdown_requested is not None and shutdown_requested():
                return self._interrupted(attempt - 1)

            logger.info("Orchestration attempt %d of %d", attempt, self.max_attempts)
            remove_assignment(assignment_path)
            request = AgentRunRequest(
                prompt=self.prompt_builder.attempt_prompt(previous),
                timeout_seconds=self.attempt_timeout,
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
                previous = start_error_diagnostic(str(error))
                logger.warning("Orchestration attempt %d could not start: %s", attempt, error)
                if not error.transient:
                    return self._result(IterationOutcome.PROCESS_ERROR, attempt, previous)
                continue

            if result.interrupted:
                return self._interrupted(attempt)

            if result.timed_out:
                logger.warning("Orchestration attempt %d timed out", attempt)
                previous = timeout_diagnostic(self.attempt_timeout)
                continue

            if not result.succeeded:
                logger.warning(
                    "Orchestration attempt %d failed with exit code: %s",
                    attempt,
                    result.exit_code,
                )
                previous = process_error_diagnostic(result)
                continue

            validation = validate_assignment(assignment_path)
            if validation.state is AssignmentState.FILE_ABSENT:
                logger.info("Orchestration completed: No work available")
                return self._result(IterationOutcome.NO_WORK_AVAILABLE, attempt, None)

            if validation.is_valid and validation.assignment is not None:
                logger.info(
                    "Orchestration succeeded on attempt %d: task=%s next_step=%s",
                    attempt,
                    validation.assignment.task_id,
                    validation.assignment.next_step,
                )
                phase = self._result(IterationOutcome.SUCCESS, attempt, None)
                phase.assignment = validation.assignment
                return phase

            logger.warning(
                "Validation failed on attempt %d: %s",
                attempt,
                validation.state.value,
            )
            previous = validation.diagnostic

        return self._result(IterationOutcome.VALIDATION_EXHAUSTED, self.max_attempts, previous)

    def _result(
        self,
        outcome: IterationOutcome,
        attempts: int,
        diagnostic: Diagnostic | None,
    ) -> PhaseResult:
        return PhaseResult(
            outcome=outcome,
            attempts=attempts,
            diagnostic=diagnostic,
            timeout_seconds=self.attempt_timeout,
        )

    def _interrupted(self, attempts: int) -> PhaseResult:
        logger.warning("Orchestration interrupted by shutdown request")
        return self._result(
            IterationOutcome.PROCESS_ERROR,
            attempts,
            Diagnostic(
                category=DiagnosticCategory.PROCESS_ERROR,
                summary="Orchestration interrupted by shutdown request.",
            ),
        )
