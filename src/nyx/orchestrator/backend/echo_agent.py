"""Local deterministic agent for planner and executor integration tests."""

from __future__ import annotations

import argparse
import json
import re
import sys
from pathlib import Path

_OBJECTIVE_LINE = re.compile(r"^Objective:\s*(.*)$", re.MULTILINE)
_TASK_LINE = re.compile(r"^Task:\s*(.*)$", re.MULTILINE)


def main(argv: list[str] | None = None) -> int:
    """Print a plan or a FILE block derived from the prompt file."""

    parser = argparse.ArgumentParser()
    parser.add_argument("--prompt-file", required=True)
    parser.add_argument("--mode", choices=("plan", "code"), default="code")
    parser.add_argument("--output-file", default="echo_output.txt")
    args = parser.parse_args(argv)

    prompt = Path(args.prompt_file).read_text("utf-8")
    if args.mode == "plan":
        match = _OBJECTIVE_LINE.search(prompt)
        objective = match.group(1).strip() if match else "objective"
        plan = {
            "tasks": [
                {
                    "id": 1,
                    "description": f"Create file objective.txt content: {objective}",
                    "dependencies": [],
                },
                {
                    "id": 2,
                    "description": "Run command: echo planned",
                    "dependencies": [1],
                },
            ],
            "done": True,
        }
        print(f"Here is the plan:\n```json\n{json.dumps(plan, indent=2)}\n```")
        return 0

    match = _TASK_LINE.search(prompt)
    task_text = match.group(1).strip() if match else ""
    print(f"Generated output.\nFILE: {args.output_file}\n```text\n{task_text}\n```")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
