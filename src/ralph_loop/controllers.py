"""Controllers for supervisor CLI commands."""

from __future__ import annotations

import os
import signal
from dataclasses import dataclass
from pathlib import Path

from ralph_loop.config import Settings
from ralph_loop.supervisor.backend import CliAgentBackend
from ralph_loop.supervisor.iteration import IterationController
from ralph_loop.supervisor.lock import PidFileLock, is_process_running
from ralph_loop.supervisor.loop import SupervisorLoop
from ralph_loop.supervisor.retention import LOG_SUFFIX, LogRetentionManager
from ralph_loop.supervisor.validator import validate_assignment


@dataclass(slots=True)
class LoopProjectCommand:
    """CLI input shared by every command: which project to act on."""

    project_dir: Path | None
    project: str | None


@dataclass(slots=True)
class LoopRunCommand:
    """CLI input for the continuous loop."""

    project_dir: Path | None
    project: str | None
    max_cycles: int | None = None


@dataclass(slots=True)
class LoopValidateCommand:
    """CLI input for assignment validation."""

    project_dir: Path | None
    project: str | None
    path: Path | None = None


@dataclass(slots=True)
class LoopStatusCommand:
    """CLI input for lock and log inspection."""

    project_dir: Path | None
    project: str | None
    recent_logs: int = 5


@dataclass(slots=True)
class LoopCommandResult:
    """Lines to render plus whether the command should exit non-zero."""

    lines: list[str]
    success: bool


class LoopCliController:
    """Coordinates loop, validation and inspection CLI operations."""

    def run(self, command: LoopRunCommand) -> list[str]:
        settings = _settings(command.project_dir, command.project)
        summary = _supervisor(settings).run(max_cycles=command.max_cycles)
        return [
            "Loop summary: "
            f"cycles={summary.cycles} succeeded={summary.succeeded} "
            f"no_work={summary.no_work} failed={summary.failed} "
            f"skipped={summary.skipped} cooldowns={summary.cooldowns}",
        ]

    def once(self, command: LoopProjectCommand) -> LoopCommandResult:
        """Run a single iteration under the project lock."""

        settings = _settings(command.project_dir, command.project)
        loop = _supervisor(settings)
        summary = loop.run(max_cycles=1)
        if summary.skipped:
            holder = PidFileLock(settings.paths.lock_path).holder_pid()
            return LoopCommandResult(
                lines=[f"Iteration skipped: lock held by PID {holder}"],
                success=False,
            )

        report = loop.last_report
        if report is None:
            return LoopCommandResult(
                lines=["Iteration crashed; see the log output above."],
                success=False,
            )

        lines = [
            f"Iteration outcome: {report.outcome.value}",
            f"Log file: {report.log_path}",
        ]
        if report.orchestration is not None:
            lines.append(f"Orchestration attempts: {report.orchestration.attempts}")
            if report.orchestration.assignment is not None:
                lines.append(f"Task: {report.orchestration.assignment.task_id}")
        if report.is_failure and report.diagnostic is not None:
            lines.append(report.diagnostic.summary)
        return LoopCommandResult(lines=lines, success=not report.is_failure)

    def validate(self, command: LoopValidateCommand) -> LoopCommandResult:
        settings = _settings(command.project_dir, command.project)
        path = command.path or settings.paths.assignment_path
        result = validate_assignment(path)

        lines = [f"Assignment: {path}", f"State: {result.state.value}"]
        if result.assignment is not None:
            lines.extend(
                [
                    f"task_id: {result.assignment.task_id}",
                    f"next_step: {result.assignment.next_step}",
                    f"pull_request_url: {result.assignment.pull_request_url or '-'}",
                ],
            )
        elif result.diagnostic is not None:
            lines.append("")
            lines.extend(result.diagnostic.render().splitlines())
        return LoopCommandResult(lines=lines, success=result.is_valid)

    def status(self, command: LoopStatusCommand) -> list[str]:
        """Show lock holder, project inputs and the latest iteration logs."""

        settings = _settings(command.project_dir, command.project)
        paths = settings.paths
        lock = PidFileLock(paths.lock_path)

        lines = [f"Project: {paths.project_name} ({paths.project_dir})"]
        if not paths.lock_path.exists():
            lines.append("Lock: free")
        else:
            holder = lock.holder_pid()
            if holder is not None and is_process_running(holder):
                lines.append(f"Lock: held by PID {holder} (running)")
            else:
                lines.append(f"Lock: stale (PID {holder if holder is not None else 'unknown'})")

        lines.append(f"Execute file: {'present' if paths.execute_path.is_file() else 'missing'}")
        lines.append(
            f"Assignment file: {'present' if paths.assignment_path.exists() else 'absent'}",
        )

        logs = _recent_logs(paths.log_dir, command.recent_logs)
        if not logs:
            lines.append("Recent logs: none")
            return lines
        lines.append("Recent logs:")
        for log_file in logs:
            lines.append(f"- {log_file.name} size_bytes={log_file.stat().st_size}")
        return lines

    def prune(self, command: LoopProjectCommand) -> list[str]:
        """Run log compression and age-based deletion once, synchronously."""

        settings = _settings(command.project_dir, command.project)
        paths = settings.paths
        manager = LogRetentionManager()
        active_log = None
        if PidFileLock(paths.lock_path).is_held():
            active_log = _active_log(paths.log_dir)
        threads = manager.rotate(
            paths.log_dir,
            settings.retention.max_log_bytes,
            active_log=active_log,
        )
        for thread in threads:
            thread.join()
        deleted = manager.retain(paths.log_dir, settings.retention.max_log_age_days)
        deleted += manager.retain(paths.archive_dir, settings.retention.max_log_age_days)

        lines = [f"Prune summary: compressed={len(threads)} deleted={len(deleted)}"]
        if active_log is not None:
            lines.append(f"- skipped active log {active_log.name} (iteration in progress)")
        lines.extend(f"- deleted {path}" for path in deleted)
        return lines

    def stop(self, command: LoopProjectCommand) -> LoopCommandResult:
        """Ask the process holding the project lock to shut down."""

        settings = _settings(command.project_dir, command.project)
        lock_path = settings.paths.lock_path
        holder = PidFileLock(lock_path).holder_pid()
        if holder is None:
            return LoopCommandResult(
                lines=[f"No iteration in progress (no readable lock at {lock_path})"],
                success=False,
            )
        if not is_process_running(holder):
            return LoopCommandResult(
                lines=[f"Lock is stale: PID {holder} is not running"],
                success=False,
            )
        try:
            os.kill(holder, signal.SIGTERM)
        except ProcessLookupError:
            return LoopCommandResult(lines=[f"PID {holder} exited before signal"], success=False)
        return LoopCommandResult(lines=[f"Sent SIGTERM to PID {holder}"], success=True)


def _settings(project_dir: Path | None, project: str | None) -> Settings:
    settings = Settings.from_env(project_root=project_dir, project_name=project)
    settings.validate()
    return settings


def _supervisor(settings: Settings) -> SupervisorLoop:
    return SupervisorLoop(
        settings=settings,
        lock=PidFileLock(settings.paths.lock_path),
        iteration=IterationController(settings=settings, invoker=CliAgentBackend()),
    )


def _recent_logs(log_dir: Path, limit: int) -> list[Path]:
    if not log_dir.is_dir():
        return []
    logs = [path for path in log_dir.glob(f"*{LOG_SUFFIX}*") if path.is_file()]
    return sorted(logs, key=lambda path: path.name, reverse=True)[:limit]


def _active_log(log_dir: Path) -> Path | None:
    """Newest uncompressed log; names sort by start time."""

    if not log_dir.is_dir():
        return None
    logs = sorted(log_dir.glob(f"*{LOG_SUFFIX}"), key=lambda path: path.name)
    return logs[-1] if logs else None
