from __future__ import annotations

from pathlib import Path

import allure
import pytest

from ralph_loop.config import DEFAULT_AGENT_COMMAND, LoopSettings, Settings, TimeoutSettings

pytestmark = [
    allure.epic("Supervisor Loop"),
    allure.feature("Configuration"),
]


def test_defaults(clean_ralph_env, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.chdir(tmp_path)

    settings = Settings.from_env()

    assert settings.project_root.resolve() == tmp_path.resolve()
    assert settings.project_name == "default"
    assert settings.timeouts.iteration_seconds == 7_200
    assert settings.loop.max_orchestration_attempts == 5
    assert settings.loop.max_consecutive_failures == 3
    assert settings.loop.cooldown_seconds == 60.0
    assert settings.retention.max_log_bytes == 50 * 1024 * 1024
    assert settings.retention.max_log_age_days == 7
    assert settings.agent.command_template == DEFAULT_AGENT_COMMAND
    assert settings.agent.orchestrate_prompt_path is None
    assert settings.agent.echo_output is True
    settings.validate()


def test_environment_overrides(clean_ralph_env, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("RALPH_PROJECT_DIR", str(tmp_path))
    monkeypatch.setenv("RALPH_PROJECT", "web")
    monkeypatch.setenv("RALPH_CLAUDE_TIMEOUT", "3600")
    monkeypatch.setenv("RALPH_MAX_ORCHESTRATION_ATTEMPTS", "2")
    monkeypatch.setenv("RALPH_ECHO_AGENT_OUTPUT", "off")
    monkeypatch.setenv("RALPH_ORCHESTRATE_PROMPT", str(tmp_path / "orchestrate.md"))

    settings = Settings.from_env()

    assert settings.project_root == tmp_path
    assert settings.project_name == "web"
    assert settings.timeouts.iteration_seconds == 3_600
    assert settings.loop.max_orchestration_attempts == 2
    assert settings.agent.echo_output is False
    assert settings.agent.orchestrate_prompt_path == tmp_path / "orchestrate.md"


def test_explicit_arguments_win_over_environment(clean_ralph_env, tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("RALPH_PROJECT", "web")

    settings = Settings.from_env(project_root=tmp_path, project_name="api")

    assert settings.project_name == "api"
    assert settings.paths.lock_path == tmp_path / ".ralph" / "projects" / "api" / "claude.lock"


def test_project_paths_layout(tmp_path: Path) -> None:
    paths = Settings(project_root=tmp_path, project_name="demo").paths
    project_dir = tmp_path / ".ralph" / "projects" / "demo"

    assert paths.project_dir == project_dir
    assert paths.log_dir == project_dir / "claude_output"
    assert paths.assignment_path == project_dir / "assignment.json"
    assert paths.execute_path == project_dir / "execute.md"
    assert paths.project_settings_path == project_dir / "settings.json"
    assert paths.global_settings_path == tmp_path / ".ralph" / "settings.json"
    assert paths.archive_dir == tmp_path / ".ralph" / "archive"


def test_invalid_boolean_is_rejected(clean_ralph_env, monkeypatch) -> None:
    monkeypatch.setenv("RALPH_ECHO_AGENT_OUTPUT", "maybe")

    with pytest.raises(ValueError, match="RALPH_ECHO_AGENT_OUTPUT"):
        Settings.from_env()


@pytest.mark.parametrize(
    ("settings", "message"),
    [
        (Settings(project_name="../etc"), "Invalid RALPH_PROJECT"),
        (Settings(timeouts=TimeoutSettings(iteration_seconds=0)), "RALPH_CLAUDE_TIMEOUT"),
        (
            Settings(loop=LoopSettings(max_orchestration_attempts=0)),
            "RALPH_MAX_ORCHESTRATION_ATTEMPTS",
        ),
        (
            Settings(loop=LoopSettings(max_consecutive_failures=0)),
            "RALPH_MAX_CONSECUTIVE_FAILURES",
        ),
    ],
)
def test_validate_rejects_unusable_values(settings: Settings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        settings.validate()
