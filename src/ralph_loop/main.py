"""CLI entrypoint for ralph-loop."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click

from ralph_loop import __version__
from ralph_loop.controllers import (
    LoopCliController,
    LoopCommandResult,
    LoopProjectCommand,
    LoopRunCommand,
    LoopStatusCommand,
    LoopValidateCommand,
)

click.rich_click.USE_MARKDOWN = True
LOOP_CONTROLLER = LoopCliController()
LOG_FORMAT = "[ralph] %(asctime)s %(levelname)s %(message)s"

_project_dir_option = click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Repository root containing `.ralph/`. Defaults to RALPH_PROJECT_DIR or cwd.",
)
_project_option = click.option(
    "--project",
    default=None,
    help="Project name under `.ralph/projects/`. Defaults to RALPH_PROJECT or `default`.",
)


@click.group()
@click.version_option(version=__version__, prog_name="ralph-loop")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def ralph_loop(verbose: bool) -> None:
    """Autonomous agent orchestration loop."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )


@ralph_loop.command("run")
@_project_dir_option
@_project_option
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many cycles. Runs until SIGINT/SIGTERM when omitted.",
)
def run(project_dir: Path | None, project: str | None, max_cycles: int | None) -> None:
    """Run orchestration/execution iterations continuously."""

    with _configuration_errors():
        lines = LOOP_CONTROLLER.run(
            LoopRunCommand(project_dir=project_dir, project=project, max_cycles=max_cycles),
        )
    _emit_lines(lines)


@ralph_loop.command("once")
@_project_dir_option
@_project_option
def once(project_dir: Path | None, project: str | None) -> None:
    """Run exactly one iteration; exit non-zero when it fails."""

    with _configuration_errors():
        result = LOOP_CONTROLLER.once(LoopProjectCommand(project_dir=project_dir, project=project))
    _emit_result(result, "Iteration failed.")


@ralph_loop.command("validate")
@_project_dir_option
@_project_option
@click.option(
    "--path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Assignment file to check. Defaults to the project's `assignment.json`.",
)
def validate(project_dir: Path | None, project: str | None, path: Path | None) -> None:
    """Validate an assignment file and print its diagnostic."""

    with _configuration_errors():
        result = LOOP_CONTROLLER.validate(
            LoopValidateCommand(project_dir=project_dir, project=project, path=path),
        )
    _emit_result(result, "Assignment is not valid.")


@ralph_loop.command("status")
@_project_dir_option
@_project_option
@click.option(
    "--recent-logs",
    type=click.IntRange(min=1, max=100),
    default=5,
    show_default=True,
    help="How many latest iteration logs to list.",
)
def status(project_dir: Path | None, project: str | None, recent_logs: int) -> None:
    """Show lock holder and latest iteration logs."""

    with _configuration_errors():
        lines = LOOP_CONTROLLER.status(
            LoopStatusCommand(project_dir=project_dir, project=project, recent_logs=recent_logs),
        )
    _emit_lines(lines)


@ralph_loop.command("prune")
@_project_dir_option
@_project_option
def prune(project_dir: Path | None, project: str | None) -> None:
    """Compress oversized logs and delete expired ones."""

    with _configuration_errors():
        lines = LOOP_CONTROLLER.prune(LoopProjectCommand(project_dir=project_dir, project=project))
    _emit_lines(lines)


@ralph_loop.command("stop")
@_project_dir_option
@_project_option
def stop(project_dir: Path | None, project: str | None) -> None:
    """Send SIGTERM to the process holding the project lock."""

    with _configuration_errors():
        result = LOOP_CONTROLLER.stop(LoopProjectCommand(project_dir=project_dir, project=project))
    _emit_result(result, "Nothing to stop.")


@contextmanager
def _configuration_errors() -> Iterator[None]:
    try:
        yield
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_result(result: LoopCommandResult, failure_message: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(failure_message)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ralph_loop()
