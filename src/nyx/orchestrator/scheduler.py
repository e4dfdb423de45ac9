"""Scheduler that drives a task graph through the planner and executor."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any

from nyx.config import SchedulerSettings
from nyx.orchestrator.errors import SchedulerStuck, TaskExecutionFault
from nyx.orchestrator.events import EventSink, EventType, RunEvent, null_sink
from nyx.orchestrator.memory import LOG, OBJECTIVE, TASK_RESULT, SessionMemory
from nyx.orchestrator.models import (
    LogLevel,
    RunReport,
    RunState,
    RunStats,
    Task,
    TaskResult,
    TaskStatus,
)

if TYPE_CHECKING:
    from nyx.orchestrator.backend.base import Executor
    from nyx.orchestrator.graph import TaskGraph
    from nyx.orchestrator.planner import Planner

logger = logging.getLogger(__name__)

_PY_LOG_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


class Scheduler:
    """Runs the plan -> ready -> dispatch -> retry loop for one objective.

    The scheduler is the only writer of the graph it runs and the only
    producer of the run's event stream.  Events are delivered synchronously
    through `sink` in the order the underlying state changes happen.
    """

    def __init__(
        self,
        *,
        settings: SchedulerSettings | None = None,
        sink: EventSink | None = None,
        memory: SessionMemory | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or SchedulerSettings()
        self.memory = memory or SessionMemory()
        self._sink = sink or null_sink
        self._sleep = sleep
        self._clock = clock
        self._mutex = threading.RLock()
        self.state = RunState.IDLE
        self.graph: TaskGraph | None = None
        self._start_time = clock()
        self._dispatch_count = 0
        self._active_agents: dict[int, str] = {}

    def run(self, objective: str, *, planner: Planner, executor: Executor) -> RunReport:
        """Plan `objective`, then execute the plan unless plan-only mode is on."""

        self._begin_run()
        self.state = RunState.PLANNING
        with self._mutex:
            self.memory.add_entry(OBJECTIVE, {"objective": objective})
        self.log(f"Processing objective: {objective}")
        try:
            self.log("Planning tasks...")
            graph = planner.generate_plan(objective, self.memory.context_summary())
            self._accept_plan(graph)
            if self.settings.plan_only:
                self.log("Plan only mode enabled. Skipping execution.")
                self.log("Final Plan:\n" + graph.render())
                return self.report()
            return self._execute_graph(graph, executor)
        except Exception as error:
            self._abort(error)
            raise
        finally:
            self._emit_stats()
            self.log("Objective processing finished.")

    def execute(self, graph: TaskGraph, executor: Executor) -> RunReport:
        """Validate and execute an already built graph."""

        self._begin_run()
        try:
            self._accept_plan(graph)
            return self._execute_graph(graph, executor)
        except Exception as error:
            self._abort(error)
            raise
        finally:
            self._emit_stats()

    def record_dispatch(self) -> None:
        """Count one costly external call (planner or model invocation)."""

        with self._mutex:
            self._dispatch_count += 1
        self._emit_stats()

    def stats(self) -> RunStats:
        """Statistics derived from the current graph state."""

        with self._mutex:
            tasks = self.graph.all_tasks() if self.graph is not None else []
            return RunStats(
                start_time=self._start_time,
                elapsed_seconds=int(self._clock() - self._start_time),
                dispatch_count=self._dispatch_count,
                tasks_total=len(tasks),
                tasks_completed=sum(1 for task in tasks if task.status == TaskStatus.COMPLETED),
                tasks_failed=sum(1 for task in tasks if task.status == TaskStatus.FAILED),
                active_agents=dict(self._active_agents),
            )

    def report(self) -> RunReport:
        with self._mutex:
            graph = self.graph
            return RunReport(
                state=self.state,
                stats=self.stats(),
                tasks=graph.all_tasks() if graph is not None else [],
                blocked_task_ids=(
                    [task.id for task in graph.blocked_tasks()] if graph is not None else []
                ),
            )

    def log(self, message: str, level: LogLevel = LogLevel.INFO) -> None:
        """Record a run log line in memory, Python logging, and the event stream."""

        with self._mutex:
            self.memory.add_entry(LOG, {"message": message, "level": level.value})
        logger.log(_PY_LOG_LEVELS[level], "%s", message)
        self._emit(EventType.LOG, {"message": message, "level": level.value})

    def _begin_run(self) -> None:
        with self._mutex:
            self.state = RunState.IDLE
            self.graph = None
            self._start_time = self._clock()
            self._dispatch_count = 0
            self._active_agents = {}

    def _accept_plan(self, graph: TaskGraph) -> None:
        if not graph.validated:
            self.log("Validating task graph for cycles...")
            graph.validate()
        with self._mutex:
            self.graph = graph
            self.state = RunState.READY
        self._emit_stats()
        self._emit(EventType.PLAN_READY, graph.all_tasks())
        self.log(f"Planning complete ({len(graph)} tasks).")

    def _execute_graph(self, graph: TaskGraph, executor: Executor) -> RunReport:
        self.state = RunState.EXECUTING
        self.log("Starting task execution...")
        self._dispatch_loop(graph, executor)
        self.state = RunState.DONE
        self.log("All tasks executed.")
        self._emit(EventType.ALL_TASKS_DONE)
        return self.report()

    def _dispatch_loop(self, graph: TaskGraph, executor: Executor) -> None:  # noqa: C901
        label = getattr(executor, "label", type(executor).__name__)
        max_workers = max(1, self.settings.max_workers)
        pool = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="nyx-task")
            if max_workers > 1
            else None
        )
        in_flight: dict[Future[TaskResult], Task] = {}
        stuck_iterations = 0
        try:
            while True:
                with self._mutex:
                    if not graph.has_unfinished():
                        break
                    ready = graph.get_ready_tasks()

                free_slots = max_workers - len(in_flight)
                if ready and free_slots > 0:
                    stuck_iterations = 0
                    for task in ready[:free_slots]:
                        self._start_task(graph, task, label)
                        if pool is None:
                            self._run_inline(graph, task, executor)
                        else:
                            in_flight[pool.submit(executor.execute, task)] = task
                    if pool is None:
                        continue

                if in_flight:
                    done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                    for future in done:
                        task = in_flight.pop(future)
                        error = future.exception()
                        if error is not None:
                            raise self._fault(graph, task, error) from error
                        self._apply_result(graph, task, future.result())
                    continue

                if self._stop_on_blocked(graph):
                    break
                stuck_iterations += 1
                self._wait_while_stuck(graph, stuck_iterations)
        finally:
            if pool is not None:
                pool.shutdown(wait=True)
                self._settle_in_flight(graph, in_flight)
        self.log("Task execution loop finished.")

    def _run_inline(self, graph: TaskGraph, task: Task, executor: Executor) -> None:
        try:
            result = executor.execute(task)
        except Exception as error:
            raise self._fault(graph, task, error) from error
        self._apply_result(graph, task, result)

    def _settle_in_flight(
        self,
        graph: TaskGraph,
        in_flight: dict[Future[TaskResult], Task],
    ) -> None:
        """Record work that finished after the loop was aborted; no retries are scheduled."""

        for future, task in list(in_flight.items()):
            in_flight.pop(future)
            error = future.exception()
            if error is not None:
                self._fault(graph, task, error)
                continue
            self._apply_result(graph, task, future.result(), allow_retry=False)

    def _start_task(self, graph: TaskGraph, task: Task, label: str) -> None:
        self.log(f"Starting task {task.id}: {task.description}")
        with self._mutex:
            graph.mark_status(task.id, TaskStatus.IN_PROGRESS)
            self._active_agents[task.id] = label
            agents = dict(self._active_agents)
        self._emit(
            EventType.TASK_STATUS_UPDATE,
            {"id": task.id, "status": TaskStatus.IN_PROGRESS},
        )
        self._emit(EventType.AGENT_STATUS_UPDATE, agents)
        self._emit_stats()

    def _apply_result(
        self,
        graph: TaskGraph,
        task: Task,
        result: TaskResult,
        *,
        allow_retry: bool = True,
    ) -> None:
        status = TaskStatus.COMPLETED if result.success else TaskStatus.FAILED
        with self._mutex:
            self.memory.add_entry(
                TASK_RESULT,
                {
                    "task_id": task.id,
                    "description": task.description,
                    "success": result.success,
                    "message": result.message,
                },
            )
            graph.mark_status(task.id, status, result)
            self._active_agents.pop(task.id, None)
            agents = dict(self._active_agents)
        suffix = f": {result.message}" if result.message else ""
        self.log(f"Task {task.id} finished with status: {status.value}{suffix}")
        self._emit(EventType.AGENT_STATUS_UPDATE, agents)
        self._emit(EventType.TASK_STATUS_UPDATE, {"id": task.id, "status": status})
        self._emit_stats()
        if result.success or not allow_retry:
            return

        max_retries = self.settings.max_retries
        if task.attempts <= max_retries:
            self.log(
                f"Retrying task {task.id} (retry {task.attempts}/{max_retries})...",
                LogLevel.WARN,
            )
            with self._mutex:
                graph.reset_for_retry(task.id)
            self._emit(
                EventType.TASK_STATUS_UPDATE,
                {"id": task.id, "status": TaskStatus.PENDING},
            )
            return

        self.log(f"Task {task.id} failed after max retries.", LogLevel.ERROR)
        self.log(
            f"[Analysis Required] Task {task.id} failed permanently. "
            f"Error: {result.message or 'Unknown'}",
            LogLevel.WARN,
        )

    def _fault(
        self,
        graph: TaskGraph,
        task: Task,
        error: BaseException,
    ) -> TaskExecutionFault:
        message = str(error) or type(error).__name__
        self.log(f"Critical error during task {task.id} execution: {message}", LogLevel.ERROR)
        with self._mutex:
            graph.mark_status(task.id, TaskStatus.FAILED, {"error": message})
            self.memory.add_entry(
                TASK_RESULT,
                {
                    "task_id": task.id,
                    "description": task.description,
                    "success": False,
                    "message": message,
                },
            )
            self._active_agents.pop(task.id, None)
            agents = dict(self._active_agents)
        self._emit(EventType.AGENT_STATUS_UPDATE, agents)
        self._emit(EventType.TASK_STATUS_UPDATE, {"id": task.id, "status": TaskStatus.FAILED})
        self._emit_stats()
        return TaskExecutionFault(task.id, message)

    def _stop_on_blocked(self, graph: TaskGraph) -> bool:
        """True when every unfinished task waits on a permanently failed dependency."""

        with self._mutex:
            if graph.in_progress_tasks():
                return False
            pending_ids = [task.id for task in graph.pending_tasks()]
            blocked_ids = [task.id for task in graph.blocked_tasks()]
        if not pending_ids or pending_ids != blocked_ids:
            return False
        self.log(
            "Tasks blocked by permanently failed dependencies will not run: "
            f"{', '.join(str(task_id) for task_id in blocked_ids)}",
            LogLevel.WARN,
        )
        return True

    def _wait_while_stuck(self, graph: TaskGraph, iteration: int) -> None:
        self.log(
            "No tasks runnable, but unfinished tasks remain. Possible deadlock or cycle.",
            LogLevel.WARN,
        )
        if iteration > self.settings.max_stuck_iterations:
            self.log("Too many consecutive waits. Aborting execution.", LogLevel.ERROR)
            with self._mutex:
                unfinished = [
                    task.id
                    for task in graph.all_tasks()
                    if task.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)
                ]
            raise SchedulerStuck(unfinished)
        self._sleep(self.settings.stuck_backoff_seconds * iteration)

    def _abort(self, error: Exception) -> None:
        with self._mutex:
            self.state = RunState.ABORTED
        self.log(f"Error during objective processing: {error}", LogLevel.ERROR)
        self._emit(EventType.ORCHESTRATION_FAILED, error)

    def _emit_stats(self) -> None:
        self._emit(EventType.STATS_UPDATE, self.stats())

    def _emit(self, event_type: EventType, payload: Any = None) -> None:
        try:
            self._sink(RunEvent(type=event_type, payload=payload))
        except Exception:
            logger.exception("Event sink failed for %s", event_type.value)
