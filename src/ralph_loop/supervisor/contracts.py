"""File-based contracts shared with the external agent."""

from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any

from ralph_loop.supervisor.models import Assignment

LEGACY_WORKFLOW_KEY = "workflow"


def write_json(path: Path, payload: dict[str, Any]) -> None:
    """Persist JSON payload using deterministic formatting."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True), "utf-8")


def load_json(path: Path) -> dict[str, Any]:
    """Load JSON document and validate top-level object type."""

    payload = json.loads(path.read_text("utf-8"))
    if not isinstance(payload, dict):
        raise TypeError(f"Expected JSON object in {path}")
    return payload


def write_assignment(path: Path, assignment: Assignment) -> None:
    """Serialize an assignment the way the agent is asked to write it."""

    payload = asdict(assignment)
    if not assignment.work_log:
        payload.pop("work_log")
    write_json(path, payload)


def remove_assignment(path: Path) -> bool:
    """Delete the assignment artifact; return whether one existed."""

    try:
        path.unlink()
    except FileNotFoundError:
        return False
    return True


def is_legacy_assignment(raw: dict[str, Any]) -> bool:
    """Old orchestrators wrote ``{"workflow": ..., "task_id": ...}`` and no ``next_step``."""

    return LEGACY_WORKFLOW_KEY in raw and "next_step" not in raw


def convert_legacy_assignment(raw: dict[str, Any]) -> dict[str, Any]:
    """Map a legacy document onto the current field set."""

    workflow = raw.get(LEGACY_WORKFLOW_KEY)
    next_step = f"Continue from workflow: {workflow}" if workflow else "Start workflow"
    return {
        "task_id": raw.get("task_id"),
        "next_step": next_step,
        "pull_request_url": None,
    }


def assignment_from_payload(raw: dict[str, Any]) -> Assignment:
    """Build an ``Assignment`` from an already validated payload."""

    pull_request_url = raw.get("pull_request_url")
    work_log = raw.get("work_log")
    return Assignment(
        task_id=raw["task_id"],
        next_step=raw["next_step"],
        pull_request_url=pull_request_url if isinstance(pull_request_url, str) else None,
        work_log=(
            [entry for entry in work_log if isinstance(entry, str)]
            if isinstance(work_log, list)
            else []
        ),
    )
