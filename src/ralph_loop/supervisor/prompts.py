"""Prompt templates for the orchestration and execution phases."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from pathlib import Path

from ralph_loop.config import ProjectPaths
from ralph_loop.supervisor.contracts import load_json
from ralph_loop.supervisor.models import Assignment, Diagnostic

logger = logging.getLogger(__name__)

TASK_MANAGER_PLACEHOLDER = "{{TASK_MANAGER_INSTRUCTIONS}}"
DEFAULT_PROVIDER = "vibe-kanban"
VALID_PROVIDERS: tuple[str, ...] = ("vibe-kanban", "github-issues", "jira", "linear", "beads")

_VARIABLE_PATTERN = re.compile(r"\{\{([^}]+)\}\}")

DEFAULT_ORCHESTRATE_PROMPT = """\
# Orchestrate

You decide what this autonomous loop works on next. Do not do the work itself.

{{TASK_MANAGER_INSTRUCTIONS}}

## Steps

1. Look for a task that is already in progress. Prefer finishing work over starting work.
2. If there is none, pick the highest priority task that is ready to start.
3. If no task is available, exit WITHOUT writing any file. That means "no work available".
4. Otherwise decide the single next step for that task: planning, implementing,
   fixing review feedback, or finishing a pull request.

## Output

Write the assignment to `{{assignment_path}}` as JSON:

```json
{
  "task_id": "<task-identifier>",
  "next_step": "<description of next step>",
  "pull_request_url": null
}
```

The execution phase will follow `{{execute_path}}` starting from `next_step`.
"""

PROVIDER_INSTRUCTIONS: dict[str, str] = {
    "vibe-kanban": (
        "## Task Manager: vibe-kanban\n\n"
        "Use the vibe-kanban MCP tools to list tasks. Tasks in 'inprogress' come first, "
        "then 'todo'. The task id is the vibe-kanban task UUID."
    ),
    "github-issues": (
        "## Task Manager: github-issues\n\n"
        "Use `gh issue list --state open` to find work. Issues labelled 'in-progress' come "
        "first. The task id is the issue number prefixed with '#'."
    ),
    "jira": (
        "## Task Manager: jira\n\n"
        "Use the Jira MCP tools (or `jira issue list`) to search the project board. Issues "
        "'In Progress' come first, then 'To Do' ordered by priority. The task id is the "
        "issue key, for example 'PROJ-123'."
    ),
    "linear": (
        "## Task Manager: linear\n\n"
        "Use the Linear MCP tools to list issues assigned to this team. Issues 'In Progress' "
        "come first, then 'Todo' ordered by priority. The task id is the issue identifier, "
        "for example 'ENG-42'."
    ),
    "beads": (
        "## Task Manager: beads\n\n"
        "Use `bd list --status in_progress` to find started work, then `bd ready` for "
        "unblocked issues. The task id is the beads issue id, for example 'bd-a1b2'."
    ),
}

RETRY_PREAMBLE = """\
# IMPORTANT: Previous Attempt Failed

Your previous orchestration attempt failed validation. Please fix the error and try again.

## Validation Error

```
{error}
```

## Instructions

Please re-read the orchestrate instructions below and ensure you:
1. Create the assignment file at the correct project-specific path
2. Use valid JSON syntax
3. Include required fields: 'task_id', 'next_step', 'pull_request_url'
4. Use a valid task ID from the task management system
5. Specify the next execution step clearly

---

"""


def determine_provider(settings_paths: tuple[Path, ...]) -> str:
    """Return the task provider named in the first readable settings file."""

    for path in settings_paths:
        if not path.is_file():
            continue
        try:
            settings = load_json(path)
        except (OSError, TypeError, json.JSONDecodeError):
            logger.debug("Ignoring unreadable settings file %s", path)
            continue
        task_management = settings.get("taskManagement")
        if not isinstance(task_management, dict):
            continue
        provider = task_management.get("provider")
        if provider in VALID_PROVIDERS:
            return provider
    return DEFAULT_PROVIDER


def provider_instructions(provider: str) -> str:
    return PROVIDER_INSTRUCTIONS.get(
        provider,
        f"## Task Manager: {provider}\n\n"
        "Provider instructions not available. Please configure manually.",
    )


def substitute_variables(template: str, variables: Mapping[str, str]) -> str:
    """Replace ``{{name}}`` placeholders; unknown names are left as-is."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1).strip()
        if name in variables:
            return variables[name]
        logger.warning("Template variable '%s' not found, leaving as-is", name)
        return match.group(0)

    return _VARIABLE_PATTERN.sub(_replace, template)


class OrchestratePromptBuilder:
    """Renders the orchestrate prompt for one project."""

    def __init__(self, paths: ProjectPaths, template_path: Path | None = None) -> None:
        self.paths = paths
        self.template_path = template_path

    def template_exists(self) -> bool:
        return self.template_path is None or self.template_path.is_file()

    def base_prompt(self) -> str:
        template = (
            DEFAULT_ORCHESTRATE_PROMPT
            if self.template_path is None
            else self.template_path.read_text("utf-8")
        )
        if TASK_MANAGER_PLACEHOLDER in template:
            provider = determine_provider(
                (self.paths.project_settings_path, self.paths.global_settings_path),
            )
            template = template.replace(TASK_MANAGER_PLACEHOLDER, provider_instructions(provider))
        return substitute_variables(
            template,
            {
                "execute_path": self._relative(self.paths.execute_path),
                "assignment_path": self._relative(self.paths.assignment_path),
            },
        )

    def attempt_prompt(self, previous: Diagnostic | None) -> str:
        """Prompt for one attempt; later attempts carry the prior diagnostic."""

        prompt = self.base_prompt()
        if previous is None:
            return prompt
        return RETRY_PREAMBLE.format(error=previous.render()) + prompt

    def _relative(self, path: Path) -> str:
        try:
            return str(path.relative_to(self.paths.root_dir))
        except ValueError:
            return str(path)


def build_workflow_prompt(assignment: Assignment, execute_content: str) -> str:
    return (
        f"Execute the workflow below for task #{assignment.task_id}.\n"
        "\n"
        "## Starting Point\n"
        "\n"
        f"{assignment.next_step}\n"
        "\n"
        "## Execution Workflow\n"
        "\n"
        f"{execute_content}"
    )
