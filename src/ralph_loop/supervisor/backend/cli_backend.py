"""Subprocess-based agent runner for CLI coding agents."""

from __future__ import annotations

import json
import logging
import shlex
import subprocess
import sys
import threading
import time
from collections import deque
from datetime import UTC, datetime
from pathlib import Path
from typing import IO

from ralph_loop.supervisor.backend.base import (
    TIMEOUT_EXIT_CODE,
    AgentRunRequest,
    AgentRunResult,
)
from ralph_loop.supervisor.models import ExitClass

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 40
_PUMP_JOIN_SECONDS = 5.0


class BackendRunError(RuntimeError):
    """Agent could not be started, with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliAgentBackend:
    """Run the configured agent command, tee its stdout into the iteration log."""

    def invoke(self, request: AgentRunRequest) -> AgentRunResult:
        run_args = _build_run_args(
            command_template=request.command_template,
            working_dir=request.working_dir,
            log_path=request.log_path,
            disallowed_tools=request.disallowed_tools,
        )
        request.log_path.parent.mkdir(parents=True, exist_ok=True)
        append_user_event(request.log_path, request.prompt)

        try:
            with request.log_path.open("ab") as log_handle:
                return _run_subprocess_with_shutdown(
                    run_args=run_args,
                    request=request,
                    log_handle=log_handle,
                )
        except FileNotFoundError as error:
            raise BackendRunError(
                f"Agent command not found: {run_args[0]}",
                transient=False,
            ) from error
        except OSError as error:
            raise BackendRunError(
                f"Agent command failed to start: {error}",
                transient=True,
            ) from error


def append_user_event(log_path: Path, prompt: str) -> None:
    """Record the prompt as a synthetic user event.

    Print mode agents do not log their input, so viewers of the iteration log
    would otherwise never see what was asked.
    """

    event = {
        "type": "user",
        "message": {"content": [{"type": "text", "text": prompt}]},
        "timestamp": datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%S.000Z"),
    }
    with log_path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(event, ensure_ascii=False) + "\n")


def build_disallowed_tools(projects_dir: Path, active_project: str) -> tuple[str, ...]:
    """Deny reads of every project directory other than the active one."""

    if not projects_dir.is_dir():
        return ()
    rules: list[str] = []
    for project_dir in sorted(projects_dir.iterdir()):
        if project_dir.is_dir() and project_dir.name != active_project:
            rules.append(f"Read({project_dir.resolve()}/*)")
    return tuple(rules)


def _build_run_args(
    *,
    command_template: str,
    working_dir: Path,
    log_path: Path,
    disallowed_tools: tuple[str, ...],
) -> list[str]:
    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("Agent command template is empty.", transient=False)

    disallowed = " ".join(
        f"--disallowedTools {shlex.quote(rule)}" for rule in disallowed_tools
    )
    try:
        rendered = stripped.format(
            disallowed_tools=disallowed,
            project_dir=shlex.quote(str(working_dir)),
            log_file=shlex.quote(str(log_path)),
        )
    except (KeyError, IndexError) as error:
        raise BackendRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise BackendRunError(
            "Agent command template rendered empty command.",
            transient=False,
        )
    return argv


def _run_subprocess_with_shutdown(
    *,
    run_args: list[str],
    request: AgentRunRequest,
    log_handle: IO[bytes],
) -> AgentRunResult:
    process = subprocess.Popen(  # noqa: S603
        run_args,
        cwd=request.working_dir,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
    )
    stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL_LINES)
    echo_stdout = getattr(sys.stdout, "buffer", None) if request.echo_output else None
    echo_stderr = getattr(sys.stderr, "buffer", None) if request.echo_output else None
    pumps = [
        threading.Thread(
            target=_feed_stdin,
            args=(process.stdin, request.prompt),
            name="agent-stdin",
            daemon=True,
        ),
        threading.Thread(
            target=_tee_stdout,
            args=(process.stdout, log_handle, echo_stdout),
            name="agent-stdout",
            daemon=True,
        ),
        threading.Thread(
            target=_collect_stderr,
            args=(process.stderr, stderr_tail, echo_stderr),
            name="agent-stderr",
            daemon=True,
        ),
    ]
    for pump in pumps:
        pump.start()

    start_monotonic = time.monotonic()
    shutdown_deadline: float | None = None
    graceful_seconds = max(0, request.graceful_shutdown_seconds or 0)
    timed_out = False
    interrupted = False

    while True:
        returncode = process.poll()
        if returncode is not None:
            break

        now = time.monotonic()
        if request.timeout_seconds > 0 and now - start_monotonic >= request.timeout_seconds:
            logger.warning("Agent exceeded %ss timeout; terminating", request.timeout_seconds)
            _terminate_process(process)
            timed_out = True
            break

        if request.shutdown_requested is not None and request.shutdown_requested():
            if shutdown_deadline is None:
                shutdown_deadline = now + graceful_seconds
            if now >= shutdown_deadline:
                _terminate_process(process)
                interrupted = True
                break

        time.sleep(0.1)

    for pump in pumps:
        pump.join(timeout=_PUMP_JOIN_SECONDS)
    elapsed = time.monotonic() - start_monotonic
    tail = "".join(stderr_tail)

    if timed_out:
        return AgentRunResult(
            exit_class=ExitClass.TIMED_OUT,
            exit_code=TIMEOUT_EXIT_CODE,
            stderr_tail=tail,
            elapsed_seconds=elapsed,
        )
    return classify_returncode(
        process.returncode,
        stderr_tail=tail,
        elapsed_seconds=elapsed,
        interrupted=interrupted,
    )


def classify_returncode(
    returncode: int | None,
    *,
    stderr_tail: str = "",
    elapsed_seconds: float = 0.0,
    interrupted: bool = False,
) -> AgentRunResult:
    """Map a raw process return code onto an exit class.

    124 is the status a ``timeout`` wrapper reports, so a command template
    that wraps the agent in ``timeout`` classifies the same way.
    """

    code = -1 if returncode is None else returncode
    if code == TIMEOUT_EXIT_CODE:
        exit_class = ExitClass.TIMED_OUT
        signum = None
    elif code < 0:
        exit_class = ExitClass.SIGNALED
        signum = -code
    else:
        exit_class = ExitClass.NORMAL
        signum = None
    return AgentRunResult(
        exit_class=exit_class,
        exit_code=code,
        signal=signum,
        stderr_tail=stderr_tail,
        elapsed_seconds=elapsed_seconds,
        interrupted=interrupted,
    )


def _feed_stdin(stream: IO[bytes] | None, prompt: str) -> None:
    if stream is None:
        return
    try:
        stream.write(prompt.encode("utf-8"))
        stream.close()
    except (BrokenPipeError, ValueError):
        logger.debug("Agent closed stdin before the prompt was fully written")


def _tee_stdout(
    stream: IO[bytes] | None,
    log_handle: IO[bytes],
    echo: IO[bytes] | None,
) -> None:
    if stream is None:
        return
    try:
        for line in iter(stream.readline, b""):
            log_handle.write(line)
            log_handle.flush()
            if echo is not None:
                echo.write(line)
                echo.flush()
    except ValueError:
        # Log handle closed after the join timeout; a grandchild kept the pipe open.
        logger.debug("Dropping agent output written after the iteration log closed")
    stream.close()


def _collect_stderr(
    stream: IO[bytes] | None,
    tail: deque[str],
    echo: IO[bytes] | None,
) -> None:
    if stream is None:
        return
    for line in iter(stream.readline, b""):
        tail.append(line.decode("utf-8", errors="replace"))
        if echo is not None:
            echo.write(line)
            echo.flush()
    stream.close()


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)
