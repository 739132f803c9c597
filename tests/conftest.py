"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from ralph_loop.config import AgentSettings, LoopSettings, Settings
from ralph_loop.supervisor.backend import AgentRunRequest, AgentRunResult
from ralph_loop.supervisor.backend.base import TIMEOUT_EXIT_CODE
from ralph_loop.supervisor.models import ExitClass

Step = Callable[[AgentRunRequest], AgentRunResult]


class ScriptedInvoker:
    """Fake agent: each invocation consumes the next scripted step."""

    def __init__(self, steps: list[Step]) -> None:
        self.steps = list(steps)
        self.requests: list[AgentRunRequest] = []

    def invoke(self, request: AgentRunRequest) -> AgentRunResult:
        self.requests.append(request)
        if not self.steps:
            raise AssertionError("Agent invoked more times than scripted")
        return self.steps.pop(0)(request)

    @staticmethod
    def exits(code: int = 0, *, stderr_tail: str = "") -> Step:
        return lambda _: AgentRunResult(
            exit_class=ExitClass.NORMAL,
            exit_code=code,
            stderr_tail=stderr_tail,
        )

    @staticmethod
    def writes(path: Path, text: str, *, code: int = 0) -> Step:
        def _step(_: AgentRunRequest) -> AgentRunResult:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text, "utf-8")
            return AgentRunResult(exit_class=ExitClass.NORMAL, exit_code=code)

        return _step

    @staticmethod
    def times_out() -> Step:
        return lambda _: AgentRunResult(
            exit_class=ExitClass.TIMED_OUT,
            exit_code=TIMEOUT_EXIT_CODE,
        )

    @staticmethod
    def raises(error: Exception) -> Step:
        def _step(_: AgentRunRequest) -> AgentRunResult:
            raise error

        return _step


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    """Project ``demo`` under ``tmp_path`` with an execute file and no pauses."""

    settings = Settings(
        project_root=tmp_path,
        project_name="demo",
        loop=LoopSettings(sleep_seconds=0.0, cooldown_seconds=0.0),
        agent=AgentSettings(echo_output=False),
    )
    settings.paths.project_dir.mkdir(parents=True)
    settings.paths.execute_path.write_text("# Execute\n\n1. Do the work.\n", "utf-8")
    return settings


@pytest.fixture()
def scripted_invoker() -> type[ScriptedInvoker]:
    return ScriptedInvoker


@pytest.fixture()
def clean_ralph_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop ``RALPH_*`` variables inherited from the developer's shell."""

    for name in (
        "RALPH_PROJECT_DIR",
        "RALPH_PROJECT",
        "RALPH_CLAUDE_TIMEOUT",
        "RALPH_MAX_ORCHESTRATION_ATTEMPTS",
        "RALPH_MAX_LOG_SIZE_MB",
        "RALPH_MAX_LOG_AGE_DAYS",
        "RALPH_SLEEP_SECONDS",
        "RALPH_COOLDOWN_SECONDS",
        "RALPH_MAX_CONSECUTIVE_FAILURES",
        "RALPH_AGENT_COMMAND",
        "RALPH_ORCHESTRATE_PROMPT",
        "RALPH_ECHO_AGENT_OUTPUT",
        "RALPH_GRACEFUL_SHUTDOWN_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
