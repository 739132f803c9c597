"""Assignment validation with diagnostics meant to be fed back to the agent."""

from __future__ import annotations

import json
import re
from pathlib import Path

from ralph_loop.supervisor.contracts import (
    assignment_from_payload,
    convert_legacy_assignment,
    is_legacy_assignment,
)
from ralph_loop.supervisor.models import (
    EXPECTED_ASSIGNMENT_SHAPE,
    AssignmentState,
    Diagnostic,
    DiagnosticCategory,
    ValidationResult,
)

LEGACY_TASK_ID_PATTERN = re.compile(r"^(?:[A-Za-z_][A-Za-z0-9_]*-[A-Za-z0-9]+|[A-Za-z0-9]{3})$")

_REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("task_id", "The 'task_id' field must contain a valid task identifier."),
    (
        "next_step",
        "The 'next_step' field must describe the next action to take in the workflow.",
    ),
)


def validate_assignment(path: Path) -> ValidationResult:  # noqa: PLR0911
    """Classify the assignment file at ``path``.

    Checks run in a fixed order and stop at the first failure: file presence,
    JSON parsing, required fields, then the legacy task id format.
    """

    if not path.exists():
        return ValidationResult(
            state=AssignmentState.FILE_ABSENT,
            diagnostic=Diagnostic(
                category=DiagnosticCategory.FILE_ABSENT,
                summary=f"Assignment file not found: {path}",
                guidance=(
                    "The orchestration process must create this file.\n\n"
                    f"Please ensure the file is written to: {path}"
                ),
                expected_shape=EXPECTED_ASSIGNMENT_SHAPE,
            ),
        )

    try:
        contents = path.read_text("utf-8")
    except (OSError, UnicodeDecodeError) as error:
        return _parse_error(f"Assignment file could not be read: {error}", "[could not read file]")

    try:
        raw = json.loads(contents)
    except json.JSONDecodeError as error:
        return _parse_error(f"JSON parsing error: {error}", contents)
    if not isinstance(raw, dict):
        return _parse_error(
            f"JSON parsing error: expected an object, got {type(raw).__name__}",
            contents,
        )

    legacy = is_legacy_assignment(raw)
    payload = convert_legacy_assignment(raw) if legacy else raw

    for field_name, guidance in _REQUIRED_FIELDS:
        value = payload.get(field_name)
        if not isinstance(value, str) or not value.strip():
            return ValidationResult(
                state=AssignmentState.MISSING_FIELD,
                diagnostic=Diagnostic(
                    category=DiagnosticCategory.MISSING_FIELD,
                    summary=f"Assignment file missing required field: '{field_name}'",
                    field_name=field_name,
                    value=None if value is None else repr(value),
                    contents=contents,
                    guidance=guidance,
                    expected_shape=EXPECTED_ASSIGNMENT_SHAPE,
                ),
            )

    task_id = payload["task_id"]
    if legacy and not LEGACY_TASK_ID_PATTERN.match(task_id):
        return ValidationResult(
            state=AssignmentState.INVALID_FORMAT,
            diagnostic=Diagnostic(
                category=DiagnosticCategory.INVALID_FORMAT,
                summary=f"Assignment field 'task_id' has an invalid format: {task_id!r}",
                field_name="task_id",
                value=task_id,
                contents=contents,
                guidance=(
                    "The 'task_id' must look like '<identifier>-<number>' "
                    "(for example 'proj-42') or be exactly three alphanumeric characters."
                ),
                expected_shape=EXPECTED_ASSIGNMENT_SHAPE,
            ),
        )

    return ValidationResult(
        state=AssignmentState.VALID,
        assignment=assignment_from_payload(payload),
    )


def _parse_error(summary: str, contents: str) -> ValidationResult:
    return ValidationResult(
        state=AssignmentState.PARSE_ERROR,
        diagnostic=Diagnostic(
            category=DiagnosticCategory.PARSE_ERROR,
            summary=f"Assignment file is not valid JSON.\n\n{summary}",
            contents=contents,
            expected_shape=EXPECTED_ASSIGNMENT_SHAPE,
        ),
    )
