from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from ralph_loop.supervisor.contracts import (
    convert_legacy_assignment,
    is_legacy_assignment,
    write_assignment,
)
from ralph_loop.supervisor.models import Assignment, AssignmentState, DiagnosticCategory
from ralph_loop.supervisor.validator import validate_assignment

pytestmark = [
    allure.epic("Supervisor Loop"),
    allure.feature("Assignment Validation"),
]


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "assignment.json"
    path.write_text(text, "utf-8")
    return path


def test_absent_file(tmp_path: Path) -> None:
    result = validate_assignment(tmp_path / "assignment.json")

    assert result.state is AssignmentState.FILE_ABSENT
    assert result.assignment is None
    assert result.diagnostic is not None
    assert result.diagnostic.category is DiagnosticCategory.FILE_ABSENT


def test_valid_assignment(tmp_path: Path) -> None:
    path = _write(
        tmp_path,
        json.dumps(
            {
                "task_id": "proj-42",
                "next_step": "implement X",
                "pull_request_url": None,
                "work_log": ["planned", 3],
            },
        ),
    )

    result = validate_assignment(path)

    assert result.is_valid
    assert result.diagnostic is None
    assert result.assignment == Assignment(
        task_id="proj-42",
        next_step="implement X",
        pull_request_url=None,
        work_log=["planned"],
    )


def test_current_format_task_id_is_not_pattern_checked(tmp_path: Path) -> None:
    path = _write(tmp_path, json.dumps({"task_id": "#17 fix login", "next_step": "review"}))

    assert validate_assignment(path).state is AssignmentState.VALID


def test_parse_error_carries_verbatim_contents(tmp_path: Path) -> None:
    path = _write(tmp_path, '{"task_id": "proj-42",')

    result = validate_assignment(path)

    assert result.state is AssignmentState.PARSE_ERROR
    diagnostic = result.diagnostic
    assert diagnostic is not None
    assert diagnostic.contents == '{"task_id": "proj-42",'
    rendered = diagnostic.render()
    assert "JSON parsing error" in rendered
    assert "Current file contents:" in rendered
    assert "Expected JSON structure:" in rendered


def test_non_object_document_is_parse_error(tmp_path: Path) -> None:
    path = _write(tmp_path, "[1, 2, 3]")

    assert validate_assignment(path).state is AssignmentState.PARSE_ERROR


@pytest.mark.parametrize(
    ("payload", "missing"),
    [
        ({"next_step": "implement X"}, "task_id"),
        ({"task_id": "proj-42"}, "next_step"),
        ({"task_id": "", "next_step": "implement X"}, "task_id"),
        ({"task_id": "proj-42", "next_step": 5}, "next_step"),
    ],
)
def test_missing_or_empty_required_field(tmp_path: Path, payload, missing) -> None:
    result = validate_assignment(_write(tmp_path, json.dumps(payload)))

    assert result.state is AssignmentState.MISSING_FIELD
    assert result.diagnostic is not None
    assert result.diagnostic.field_name == missing
    assert f"missing required field: '{missing}'" in result.diagnostic.summary


def test_task_id_is_checked_before_next_step(tmp_path: Path) -> None:
    result = validate_assignment(_write(tmp_path, "{}"))

    assert result.diagnostic is not None
    assert result.diagnostic.field_name == "task_id"


@pytest.mark.parametrize("task_id", ["proj-42", "my_app-a1", "abc", "X9z"])
def test_legacy_assignment_is_converted(tmp_path: Path, task_id: str) -> None:
    path = _write(tmp_path, json.dumps({"workflow": "implement", "task_id": task_id}))

    result = validate_assignment(path)

    assert result.is_valid
    assert result.assignment is not None
    assert result.assignment.task_id == task_id
    assert result.assignment.next_step == "Continue from workflow: implement"
    assert result.assignment.pull_request_url is None


@pytest.mark.parametrize("task_id", ["42", "abcd", "-42", "proj-", "proj 42"])
def test_legacy_assignment_with_bad_task_id(tmp_path: Path, task_id: str) -> None:
    path = _write(tmp_path, json.dumps({"workflow": "implement", "task_id": task_id}))

    result = validate_assignment(path)

    assert result.state is AssignmentState.INVALID_FORMAT
    assert result.diagnostic is not None
    assert result.diagnostic.value == task_id


def test_legacy_detection_and_conversion() -> None:
    assert is_legacy_assignment({"workflow": "plan", "task_id": "a-1"})
    assert not is_legacy_assignment({"workflow": "plan", "task_id": "a-1", "next_step": "x"})
    assert not is_legacy_assignment({"task_id": "a-1"})
    assert convert_legacy_assignment({"workflow": "", "task_id": "a-1"})["next_step"] == (
        "Start workflow"
    )


def test_written_assignment_validates(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "assignment.json"
    write_assignment(path, Assignment(task_id="proj-1", next_step="plan it"))

    payload = json.loads(path.read_text("utf-8"))
    assert "work_log" not in payload
    assert validate_assignment(path).assignment == Assignment(
        task_id="proj-1",
        next_step="plan it",
    )
