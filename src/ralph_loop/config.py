"""Runtime configuration for the supervisor loop."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_AGENT_COMMAND = (
    "claude -p --output-format=stream-json --verbose "
    "--dangerously-skip-permissions --add-dir . {disallowed_tools}"
)


@dataclass(slots=True)
class TimeoutSettings:
    """Iteration time budget and its floors."""

    iteration_seconds: int = 7_200
    min_orchestration_attempt_seconds: int = 180
    min_execution_seconds: int = 600
    graceful_shutdown_seconds: int = 5


@dataclass(slots=True)
class RetentionSettings:
    """Iteration log compression and deletion thresholds."""

    max_log_size_mb: int = 50
    max_log_age_days: int = 7

    @property
    def max_log_bytes(self) -> int:
        return self.max_log_size_mb * 1024 * 1024


@dataclass(slots=True)
class LoopSettings:
    """Supervisor loop pacing and circuit-breaker settings."""

    max_orchestration_attempts: int = 5
    sleep_seconds: float = 10.0
    cooldown_seconds: float = 60.0
    max_consecutive_failures: int = 3


@dataclass(slots=True)
class AgentSettings:
    """External agent command settings."""

    command_template: str = DEFAULT_AGENT_COMMAND
    orchestrate_prompt_path: Path | None = None
    echo_output: bool = True


@dataclass(slots=True, frozen=True)
class ProjectPaths:
    """On-disk layout of one project under ``.ralph/projects/<name>``."""

    root_dir: Path
    project_name: str

    @property
    def ralph_dir(self) -> Path:
        return self.root_dir / ".ralph"

    @property
    def projects_dir(self) -> Path:
        return self.ralph_dir / "projects"

    @property
    def project_dir(self) -> Path:
        return self.projects_dir / self.project_name

    @property
    def lock_path(self) -> Path:
        return self.project_dir / "claude.lock"

    @property
    def log_dir(self) -> Path:
        return self.project_dir / "claude_output"

    @property
    def assignment_path(self) -> Path:
        return self.project_dir / "assignment.json"

    @property
    def execute_path(self) -> Path:
        return self.project_dir / "execute.md"

    @property
    def global_settings_path(self) -> Path:
        return self.ralph_dir / "settings.json"

    @property
    def project_settings_path(self) -> Path:
        return self.project_dir / "settings.json"

    @property
    def archive_dir(self) -> Path:
        return self.ralph_dir / "archive"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    project_root: Path = field(default_factory=Path.cwd)
    project_name: str = "default"
    timeouts: TimeoutSettings = field(default_factory=TimeoutSettings)
    retention: RetentionSettings = field(default_factory=RetentionSettings)
    loop: LoopSettings = field(default_factory=LoopSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)

    @property
    def paths(self) -> ProjectPaths:
        return ProjectPaths(root_dir=self.project_root, project_name=self.project_name)

    @classmethod
    def from_env(
        cls,
        project_root: Path | None = None,
        project_name: str | None = None,
    ) -> Settings:
        """Load settings from environment with defaults matching the shell harness."""

        prompt_override = os.getenv("RALPH_ORCHESTRATE_PROMPT", "").strip()
        return cls(
            project_root=project_root or Path(os.getenv("RALPH_PROJECT_DIR") or Path.cwd()),
            project_name=project_name or os.getenv("RALPH_PROJECT", "default"),
            timeouts=TimeoutSettings(
                iteration_seconds=int(os.getenv("RALPH_CLAUDE_TIMEOUT", "7200")),
                graceful_shutdown_seconds=int(
                    os.getenv("RALPH_GRACEFUL_SHUTDOWN_SECONDS", "5"),
                ),
            ),
            retention=RetentionSettings(
                max_log_size_mb=int(os.getenv("RALPH_MAX_LOG_SIZE_MB", "50")),
                max_log_age_days=int(os.getenv("RALPH_MAX_LOG_AGE_DAYS", "7")),
            ),
            loop=LoopSettings(
                max_orchestration_attempts=int(
                    os.getenv("RALPH_MAX_ORCHESTRATION_ATTEMPTS", "5"),
                ),
                sleep_seconds=float(os.getenv("RALPH_SLEEP_SECONDS", "10")),
                cooldown_seconds=float(os.getenv("RALPH_COOLDOWN_SECONDS", "60")),
                max_consecutive_failures=int(
                    os.getenv("RALPH_MAX_CONSECUTIVE_FAILURES", "3"),
                ),
            ),
            agent=AgentSettings(
                command_template=os.getenv("RALPH_AGENT_COMMAND", DEFAULT_AGENT_COMMAND),
                orchestrate_prompt_path=Path(prompt_override) if prompt_override else None,
                echo_output=_env_bool("RALPH_ECHO_AGENT_OUTPUT", default=True),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the loop cannot run with."""

        name = self.project_name.strip()
        if not name or "/" in name or name in {".", ".."}:
            raise ValueError(f"Invalid RALPH_PROJECT name: {self.project_name!r}")
        if self.timeouts.iteration_seconds <= 0:
            raise ValueError("RALPH_CLAUDE_TIMEOUT must be > 0.")
        if self.timeouts.graceful_shutdown_seconds < 0:
            raise ValueError("RALPH_GRACEFUL_SHUTDOWN_SECONDS must be >= 0.")
        if self.loop.max_orchestration_attempts <= 0:
            raise ValueError("RALPH_MAX_ORCHESTRATION_ATTEMPTS must be > 0.")
        if self.loop.max_consecutive_failures <= 0:
            raise ValueError("RALPH_MAX_CONSECUTIVE_FAILURES must be > 0.")
        if self.loop.sleep_seconds < 0:
            raise ValueError("RALPH_SLEEP_SECONDS must be >= 0.")
        if self.loop.cooldown_seconds < 0:
            raise ValueError("RALPH_COOLDOWN_SECONDS must be >= 0.")
        if self.retention.max_log_size_mb <= 0:
            raise ValueError("RALPH_MAX_LOG_SIZE_MB must be > 0.")
        if self.retention.max_log_age_days < 0:
            raise ValueError("RALPH_MAX_LOG_AGE_DAYS must be >= 0.")
        if not self.agent.command_template.strip():
            raise ValueError("RALPH_AGENT_COMMAND must not be empty.")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
