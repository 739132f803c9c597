from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest

from ralph_loop.config import ProjectPaths
from ralph_loop.supervisor.models import Diagnostic, DiagnosticCategory
from ralph_loop.supervisor.prompts import (
    DEFAULT_PROVIDER,
    VALID_PROVIDERS,
    OrchestratePromptBuilder,
    determine_provider,
    provider_instructions,
    substitute_variables,
)

pytestmark = [
    allure.epic("Supervisor Loop"),
    allure.feature("Prompt Rendering"),
]


def _paths(tmp_path: Path) -> ProjectPaths:
    paths = ProjectPaths(root_dir=tmp_path, project_name="demo")
    paths.project_dir.mkdir(parents=True)
    return paths


def test_substitute_variables_leaves_unknown_names(caplog) -> None:
    rendered = substitute_variables(
        "Write {{ assignment_path }} then {{missing}}.",
        {"assignment_path": "a.json"},
    )

    assert rendered == "Write a.json then {{missing}}."
    assert "Template variable 'missing' not found" in caplog.text


def test_project_settings_win_over_global(tmp_path: Path) -> None:
    paths = _paths(tmp_path)
    paths.global_settings_path.write_text(
        json.dumps({"taskManagement": {"provider": "linear"}}),
        "utf-8",
    )
    paths.project_settings_path.write_text(
        json.dumps({"taskManagement": {"provider": "github-issues"}}),
        "utf-8",
    )

    provider = determine_provider((paths.project_settings_path, paths.global_settings_path))

    assert provider == "github-issues"


def test_invalid_settings_fall_back_to_default(tmp_path: Path) -> None:
    paths = _paths(tmp_path)
    paths.project_settings_path.write_text("{broken", "utf-8")
    paths.global_settings_path.write_text(
        json.dumps({"taskManagement": {"provider": "nope"}}),
        "utf-8",
    )

    provider = determine_provider((paths.project_settings_path, paths.global_settings_path))

    assert provider == DEFAULT_PROVIDER


def test_unknown_provider_instructions_ask_for_manual_setup() -> None:
    assert "configure manually" in provider_instructions("trello")
    assert "vibe-kanban" in provider_instructions("vibe-kanban")


@pytest.mark.parametrize("provider", VALID_PROVIDERS)
def test_every_selectable_provider_has_instructions(provider: str) -> None:
    instructions = provider_instructions(provider)

    assert instructions.startswith(f"## Task Manager: {provider}\n\n")
    assert "configure manually" not in instructions


def test_default_prompt_renders_project_paths(tmp_path: Path) -> None:
    prompt = OrchestratePromptBuilder(_paths(tmp_path)).base_prompt()

    assert ".ralph/projects/demo/assignment.json" in prompt
    assert ".ralph/projects/demo/execute.md" in prompt
    assert "## Task Manager: vibe-kanban" in prompt
    assert "{{" not in prompt


def test_custom_template(tmp_path: Path) -> None:
    template = tmp_path / "orchestrate.md"
    template.write_text("{{TASK_MANAGER_INSTRUCTIONS}}\nWrite {{assignment_path}}.", "utf-8")
    paths = _paths(tmp_path)
    paths.project_settings_path.write_text(
        json.dumps({"taskManagement": {"provider": "github-issues"}}),
        "utf-8",
    )

    builder = OrchestratePromptBuilder(paths, template_path=template)

    assert builder.template_exists()
    prompt = builder.base_prompt()
    assert prompt.startswith("## Task Manager: github-issues")
    assert prompt.endswith("Write .ralph/projects/demo/assignment.json.")


def test_missing_custom_template(tmp_path: Path) -> None:
    builder = OrchestratePromptBuilder(_paths(tmp_path), template_path=tmp_path / "absent.md")

    assert not builder.template_exists()


def test_retry_prompt_prepends_diagnostic(tmp_path: Path) -> None:
    builder = OrchestratePromptBuilder(_paths(tmp_path))
    diagnostic = Diagnostic(
        category=DiagnosticCategory.MISSING_FIELD,
        summary="Assignment file missing required field: 'next_step'",
    )

    prompt = builder.attempt_prompt(diagnostic)

    assert prompt.startswith("# IMPORTANT: Previous Attempt Failed")
    assert "Assignment file missing required field: 'next_step'" in prompt
    assert prompt.endswith(builder.base_prompt())
    assert builder.attempt_prompt(None) == builder.base_prompt()
