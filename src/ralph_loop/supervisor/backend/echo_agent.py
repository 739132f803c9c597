"""Local stand-in agent for CLI backend integration tests."""

from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

from ralph_loop.supervisor.contracts import write_assignment
from ralph_loop.supervisor.models import Assignment


def main(argv: list[str] | None = None) -> int:
    """Read the prompt from stdin, optionally write an assignment, exit as told."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--assignment", default=None, help="Where to write assignment.json.")
    parser.add_argument("--task-id", default="demo-1")
    parser.add_argument("--next-step", default="Run the demo workflow")
    parser.add_argument("--raw", default=None, help="Write this text instead of valid JSON.")
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--stderr", default="", help="Line to print on stderr.")
    parser.add_argument("--exit-code", type=int, default=0)
    args = parser.parse_args(argv)

    prompt = sys.stdin.read()
    first_line = prompt.strip().splitlines()[0] if prompt.strip() else ""
    event = {
        "type": "assistant",
        "message": {"content": [{"type": "text", "text": f"echo: {first_line}"}]},
    }
    sys.stdout.write(json.dumps(event) + "\n")
    sys.stdout.flush()

    if args.sleep > 0:
        time.sleep(args.sleep)

    if args.assignment is not None:
        path = Path(args.assignment)
        if args.raw is not None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(args.raw, "utf-8")
        else:
            write_assignment(path, Assignment(task_id=args.task_id, next_step=args.next_step))

    if args.stderr:
        sys.stderr.write(args.stderr + "\n")
    return args.exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
