"""Agent invocation interface."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ralph_loop.supervisor.models import ExitClass

TIMEOUT_EXIT_CODE = 124


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs required to run the agent once."""

    prompt: str
    timeout_seconds: int
    log_path: Path
    working_dir: Path
    command_template: str
    disallowed_tools: tuple[str, ...] = ()
    echo_output: bool = False
    shutdown_requested: Callable[[], bool] | None = None
    graceful_shutdown_seconds: int | None = None


@dataclass(slots=True)
class AgentRunResult:
    """How the agent process ended."""

    exit_class: ExitClass
    exit_code: int
    signal: int | None = None
    stderr_tail: str = ""
    elapsed_seconds: float = 0.0
    interrupted: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_class is ExitClass.NORMAL and self.exit_code == 0

    @property
    def timed_out(self) -> bool:
        return self.exit_class is ExitClass.TIMED_OUT


class AgentInvoker(Protocol):
    """Protocol implemented by agent runners."""

    def invoke(self, request: AgentRunRequest) -> AgentRunResult:
        """Run the agent with ``request.prompt`` on stdin and wait for it."""
