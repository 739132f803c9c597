"""Domain models for the orchestration control loop."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

EXPECTED_ASSIGNMENT_SHAPE = """\
{
  "task_id": "<task-identifier>",
  "next_step": "<description of next step>",
  "pull_request_url": null
}"""


class IterationOutcome(str, Enum):
    """Terminal status of one iteration (or of one phase)."""

    SUCCESS = "success"
    NO_WORK_AVAILABLE = "no_work_available"
    VALIDATION_EXHAUSTED = "validation_exhausted"
    TIMEOUT = "timeout"
    PROCESS_ERROR = "process_error"

    @property
    def is_failure(self) -> bool:
        return self not in {IterationOutcome.SUCCESS, IterationOutcome.NO_WORK_AVAILABLE}


class AssignmentState(str, Enum):
    """Validator states, in evaluation order."""

    FILE_ABSENT = "file_absent"
    PARSE_ERROR = "parse_error"
    MISSING_FIELD = "missing_field"
    INVALID_FORMAT = "invalid_format"
    VALID = "valid"


class DiagnosticCategory(str, Enum):
    """What kind of failure a diagnostic explains."""

    FILE_ABSENT = "file_absent"
    PARSE_ERROR = "parse_error"
    MISSING_FIELD = "missing_field"
    INVALID_FORMAT = "invalid_format"
    TIMEOUT = "timeout"
    PROCESS_ERROR = "process_error"
    CONFIGURATION = "configuration"


class ExitClass(str, Enum):
    """How the agent process ended."""

    NORMAL = "normal"
    TIMED_OUT = "timed_out"
    SIGNALED = "signaled"


@dataclass(slots=True)
class Assignment:
    """Work assignment produced by the orchestration phase."""

    task_id: str
    next_step: str
    pull_request_url: str | None = None
    work_log: list[str] = field(default_factory=list)


@dataclass(slots=True)
class Diagnostic:
    """Structured failure explanation fed back into the next attempt."""

    category: DiagnosticCategory
    summary: str
    field_name: str | None = None
    value: str | None = None
    contents: str | None = None
    guidance: str | None = None
    expected_shape: str | None = None

    def render(self) -> str:
        """Full human-readable text, suitable for prompt injection."""

        sections = [self.summary]
        if self.contents is not None:
            sections.append(f"Current file contents:\n{self.contents}")
        if self.guidance:
            sections.append(self.guidance)
        if self.expected_shape:
            sections.append(f"Expected JSON structure:\n{self.expected_shape}")
        return "\n\n".join(sections)


@dataclass(slots=True)
class ValidationResult:
    """Result of classifying one assignment document."""

    state: AssignmentState
    assignment: Assignment | None = None
    diagnostic: Diagnostic | None = None

    @property
    def is_valid(self) -> bool:
        return self.state is AssignmentState.VALID


@dataclass(slots=True)
class PhaseResult:
    """Outcome of the orchestration or execution phase."""

    outcome: IterationOutcome
    attempts: int = 0
    assignment: Assignment | None = None
    diagnostic: Diagnostic | None = None
    timeout_seconds: int = 0


@dataclass(slots=True)
class IterationReport:
    """Everything the supervisor needs to know about one finished iteration."""

    outcome: IterationOutcome
    log_path: Path
    orchestration: PhaseResult | None = None
    execution: PhaseResult | None = None
    diagnostic: Diagnostic | None = None

    @property
    def is_failure(self) -> bool:
        return self.outcome.is_failure
