"""Plan ingestion: turn planner output into a validated task graph."""

from __future__ import annotations

import json
import logging
import re
import subprocess
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Protocol

from nyx.orchestrator.backend.base import DispatchHook
from nyx.orchestrator.backend.commands import CommandTemplateError, render_command
from nyx.orchestrator.errors import CycleDetectedError, PlanningError
from nyx.orchestrator.graph import TaskGraph

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\[{].*?[\]}])\s*```", re.DOTALL | re.IGNORECASE)

PLANNING_PROMPT = """\
You are an expert software project planning assistant.
Break down the user's objective into a series of actionable development tasks.
Consider the provided context if available.
Output ONLY the plan as a valid JSON object with the following properties:
- 'tasks': A valid JSON array of task objects.
- 'done': A boolean value indicating if the plan is complete.

Each task object must have the following properties:
- 'id': A unique integer ID for the task (start from 1).
- 'description': A concise string describing the task.
- 'dependencies': An array of integer IDs of the tasks that must be completed before
  this task can start. Use an empty array [] for tasks with no dependencies.

Ensure the dependencies form a valid Directed Acyclic Graph (DAG).
Tasks that can run in parallel should not depend on each other.
Phrase file tasks as 'create file <path> content: <text>' and shell tasks as
'run command: <command>'.
Do not include any preamble, explanation, or markdown formatting around the JSON."""


class Planner(Protocol):
    """Protocol implemented by plan producers."""

    def generate_plan(self, objective: str, context: str) -> TaskGraph:
        """Return a validated graph for `objective`; raise `PlanningError` on failure."""


def parse_plan(items: Sequence[Any], *, strict: bool = True) -> TaskGraph:  # noqa: C901
    """Build and validate a graph from planner items.

    Planner ids are local to the payload and are mapped onto graph ids: a first
    pass adds every valid item, a second pass links dependencies.  In strict
    mode any malformed item or dependency raises `PlanningError`; otherwise it
    is skipped with a warning.
    """

    def reject(message: str) -> None:
        if strict:
            raise PlanningError(message)
        logger.warning("%s Skipping.", message)

    graph = TaskGraph()
    local_to_graph: dict[int, int] = {}
    accepted: list[Mapping[str, Any]] = []

    for item in items:
        if not _is_valid_item(item):
            reject(f"Invalid task item format: {json.dumps(item, default=str)}.")
            continue
        local_id = item["id"]
        if local_id in local_to_graph:
            reject(f"Duplicate plan task ID {local_id}.")
            continue
        task = graph.add_task(item["description"].strip())
        local_to_graph[local_id] = task.id
        accepted.append(item)
        logger.info(
            "Added task: [Internal ID: %s, Plan ID: %s] Desc: %s",
            task.id,
            local_id,
            task.description,
        )

    for item in accepted:
        task_id = local_to_graph[item["id"]]
        depends_on: list[int] = []
        for dependency in item["dependencies"]:
            if not _is_int(dependency):
                reject(f"Invalid dependency ID {dependency!r} for plan task {item['id']}.")
                continue
            if dependency not in local_to_graph:
                reject(f"Dependency plan ID {dependency} not found for plan task {item['id']}.")
                continue
            depends_on.append(local_to_graph[dependency])
        if depends_on:
            graph.set_dependencies(task_id, depends_on)

    try:
        graph.validate()
    except CycleDetectedError:
        raise
    except PlanningError as error:
        raise PlanningError(f"Invalid task plan: {error}") from error

    if len(graph) == 0:
        raise PlanningError("Planner failed to create any tasks from the objective.")
    return graph


def load_plan_payload(text: str) -> list[Any]:
    """Extract the task list from planner output.

    Accepts a JSON object with a ``tasks`` array, a bare JSON array, or either
    of those inside a fenced block or surrounded by prose.
    """

    payload = _parse_json_payload(text.strip())
    if payload is None:
        raise PlanningError("Planner output does not contain a JSON plan.")
    if isinstance(payload, dict):
        payload = payload.get("tasks")
    if not isinstance(payload, list):
        raise PlanningError("Planner output has no 'tasks' array.")
    return payload


class JsonFilePlanner:
    """Read a prepared plan from a JSON file."""

    def __init__(self, path: Path, *, strict: bool = True) -> None:
        self.path = Path(path)
        self.strict = strict

    def generate_plan(self, objective: str, context: str) -> TaskGraph:
        del objective, context
        try:
            text = self.path.read_text("utf-8")
        except OSError as error:
            raise PlanningError(f"Could not read plan file {self.path}: {error}") from error
        return parse_plan(load_plan_payload(text), strict=self.strict)


class CommandPlanner:
    """Ask a CLI agent for a plan and parse its stdout."""

    def __init__(
        self,
        *,
        command_template: str,
        timeout_seconds: int = 300,
        strict: bool = True,
        on_dispatch: DispatchHook | None = None,
    ) -> None:
        self.command_template = command_template
        self.timeout_seconds = timeout_seconds
        self.strict = strict
        self._on_dispatch = on_dispatch

    def generate_plan(self, objective: str, context: str) -> TaskGraph:
        prompt = build_planning_prompt(objective, context)
        with tempfile.TemporaryDirectory(prefix="nyx-plan-") as tmp:
            prompt_file = Path(tmp) / "planning_prompt.txt"
            prompt_file.write_text(prompt, "utf-8")
            try:
                run_args, command_head = render_command(
                    self.command_template,
                    values={"prompt": prompt, "prompt_file": str(prompt_file)},
                )
            except CommandTemplateError as error:
                raise PlanningError(f"Planner command is not usable: {error}") from error

            if self._on_dispatch is not None:
                self._on_dispatch()
            try:
                completed = subprocess.run(  # noqa: S603
                    run_args,
                    capture_output=True,
                    text=True,
                    timeout=self.timeout_seconds,
                    check=False,
                )
            except FileNotFoundError as error:
                raise PlanningError(f"Planner command not found: {command_head}") from error
            except subprocess.TimeoutExpired as error:
                raise PlanningError(
                    f"Planner command timed out after {self.timeout_seconds}s.",
                ) from error

        if completed.returncode != 0:
            raise PlanningError(
                f"Planner command exited with code {completed.returncode}: "
                f"{completed.stderr.strip()[-500:]}",
            )
        if not completed.stdout.strip():
            raise PlanningError("Planner received no response from the agent.")
        logger.info("Raw plan response:\n%s", completed.stdout)
        return parse_plan(load_plan_payload(completed.stdout), strict=self.strict)


def build_planning_prompt(objective: str, context: str) -> str:
    prompt = f"{PLANNING_PROMPT}\n\nObjective: {objective}\n"
    if context.strip():
        prompt += f"\nContext:\n{context}"
    return prompt


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_valid_item(item: object) -> bool:
    if not isinstance(item, Mapping):
        return False
    local_id = item.get("id")
    description = item.get("description")
    return (
        _is_int(local_id)
        and local_id >= 1
        and isinstance(description, str)
        and bool(description.strip())
        and isinstance(item.get("dependencies"), list)
    )


def _parse_json_payload(text: str) -> Any:
    direct = _try_load(text)
    if direct is not None:
        return direct

    fenced = _FENCED_JSON.search(text)
    if fenced is not None:
        payload = _try_load(fenced.group(1))
        if payload is not None:
            return payload

    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            payload = _try_load(text[start : end + 1])
            if payload is not None:
                return payload
    return None


def _try_load(raw: str) -> Any:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, (dict, list)):
        return None
    return parsed
