"""Turn abnormal agent exits into diagnostics for the next attempt."""

from __future__ import annotations

import signal

from ralph_loop.supervisor.backend.base import AgentRunResult
from ralph_loop.supervisor.models import Diagnostic, DiagnosticCategory, ExitClass

_HINT_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    (
        "The agent reported a usage or billing limit.",
        ("quota", "usage limit", "billing", "credits", "resource_exhausted"),
    ),
    (
        "The agent could not authenticate.",
        ("unauthorized", "forbidden", "invalid api key", "authentication", "permission denied"),
    ),
    (
        "The agent was rate limited; the next attempt may succeed.",
        ("too many requests", "rate limit", "429", "overloaded", "try again later"),
    ),
    (
        "The agent hit a network error.",
        ("connection reset", "network error", "could not resolve host", "econnrefused"),
    ),
)


def timeout_diagnostic(timeout_seconds: int) -> Diagnostic:
    return Diagnostic(
        category=DiagnosticCategory.TIMEOUT,
        summary=f"Orchestration timed out after {timeout_seconds} seconds.",
        value=str(timeout_seconds),
        guidance=(
            "Please ensure you complete the orchestration process within the time limit.\n"
            "Focus on:\n"
            "1. Quickly gathering the required context\n"
            "2. Making the workflow selection decision\n"
            "3. Identifying or creating the task\n"
            "4. Writing the assignment.json file"
        ),
    )


def process_error_diagnostic(result: AgentRunResult) -> Diagnostic:
    """Describe a non-zero or signal exit, with a hint from the stderr tail."""

    if result.exit_class is ExitClass.SIGNALED and result.signal is not None:
        summary = f"Agent was terminated by signal {_signal_name(result.signal)}."
    else:
        summary = f"Agent exited with error code: {result.exit_code}"

    guidance_lines = [
        "This may indicate an internal error. Please try again and ensure:",
        "1. All required tools are available",
        "2. The assignment.json file is written before exiting",
    ]
    hint = classify_stderr(result.stderr_tail)
    if hint is not None:
        guidance_lines.insert(0, hint)

    return Diagnostic(
        category=DiagnosticCategory.PROCESS_ERROR,
        summary=summary,
        value=str(result.exit_code),
        guidance="\n".join(guidance_lines),
    )


def start_error_diagnostic(message: str) -> Diagnostic:
    return Diagnostic(
        category=DiagnosticCategory.PROCESS_ERROR,
        summary=f"Agent could not be started: {message}",
    )


def classify_stderr(stderr_tail: str) -> str | None:
    """Return a one-line hint for well-known failure text, if any matches."""

    haystack = stderr_tail.lower()
    for hint, patterns in _HINT_RULES:
        if any(pattern in haystack for pattern in patterns):
            return hint
    return None


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return str(signum)
