"""Sequential task orchestration for cluster up.

The orchestrator is a cooperative step executor: preflight steps resolve the
run configuration, then the task list runs strictly in order. The first
failure stops the run; no later task is attempted.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import IO

import structlog

from ..config import RunConfig
from ..errors import TaskError, wrap_task_error
from .reporter import DeferredSink, ProgressReporter, TeeWriter
from .tasks import Task

logger = structlog.get_logger(__name__)


class RunState(Enum):
    """State of a whole run."""

    NOT_STARTED = "not_started"
    PREFLIGHT = "preflight"
    RUNNING = "running"
    COMPLETED = "completed"  # Every task succeeded or was skipped
    ABORTED = "aborted"  # A preflight step or task failed


class TaskState(Enum):
    """State of one task within a run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"  # Condition evaluated false
    FAILED = "failed"


@dataclass
class TaskRecord:
    """Outcome of one task."""

    name: str
    state: TaskState = TaskState.PENDING


@dataclass
class RunResult:
    """Result of running a task list."""

    state: RunState
    records: list[TaskRecord] = field(default_factory=list)
    error: TaskError | None = None

    @property
    def success(self) -> bool:
        return self.state == RunState.COMPLETED

    @property
    def executed(self) -> list[str]:
        """Names of tasks whose action was invoked, in order."""
        return [
            r.name for r in self.records if r.state in (TaskState.SUCCEEDED, TaskState.FAILED)
        ]

    @property
    def skipped(self) -> list[str]:
        return [r.name for r in self.records if r.state == TaskState.SKIPPED]


PreflightResolve = Callable[[RunConfig, IO[str]], RunConfig]


@dataclass(frozen=True)
class PreflightStep:
    """A read-only check that may resolve new configuration values.

    resolve() returns the (possibly updated) configuration snapshot.
    """

    name: str
    resolve: PreflightResolve
    condition: Callable[[RunConfig], bool] | None = None


class Orchestrator:
    """Run preflight steps and tasks in order, failing fast."""

    def __init__(self, out: IO[str], verbose: bool = False):
        """Initialize orchestrator.

        Args:
            out: Caller-visible output stream.
            verbose: Stream task output live instead of deferring it.
        """
        self.out = out
        self.verbose = verbose
        self.state = RunState.NOT_STARTED
        self._detailed: IO[str] = out if verbose else DeferredSink()
        self.reporter = ProgressReporter(self._detailed)

    def preflight(self, steps: Sequence[PreflightStep], config: RunConfig) -> RunConfig:
        """Run preflight steps, threading the config snapshot through them.

        Args:
            steps: Steps in execution order.
            config: Initial configuration.

        Returns:
            The configuration resolved by the last step.

        Raises:
            TaskError: The first failing step, wrapped with its name.
        """
        self.state = RunState.PREFLIGHT
        for step in steps:
            if step.condition is not None and not step.condition(config):
                continue
            self.reporter.start_task(step.name)
            try:
                config = step.resolve(config, self.reporter.task_writer())
            except Exception as err:
                self.reporter.failure(err)
                self._abort()
                raise wrap_task_error(step.name, err) from err
            self.reporter.success()
        return config

    def run(self, tasks: Sequence[Task]) -> RunResult:
        """Execute tasks in order.

        Each condition is evaluated immediately before its task. Skipped
        tasks count as success. On the first failure the captured output is
        replayed to the caller's stream and the run is aborted.

        Args:
            tasks: Ordered task list.

        Returns:
            RunResult with one record per task.
        """
        records = [TaskRecord(task.name) for task in tasks]
        self.state = RunState.RUNNING

        for task, record in zip(tasks, records):
            try:
                if task.condition is not None and not task.condition():
                    record.state = TaskState.SKIPPED
                    logger.debug("task skipped", task=task.name)
                    continue

                record.state = TaskState.RUNNING
                self.reporter.start_task(task.name)
                writer = self.reporter.task_writer()
                if task.route_to_stdout and not self.verbose:
                    writer = TeeWriter(writer, self.out)
                task.action(writer)
            except Exception as err:
                record.state = TaskState.FAILED
                if self.reporter.current_task is not None:
                    self.reporter.failure(err)
                self._abort()
                return RunResult(RunState.ABORTED, records, wrap_task_error(task.name, err))

            record.state = TaskState.SUCCEEDED
            self.reporter.success()

        self.state = RunState.COMPLETED
        return RunResult(RunState.COMPLETED, records)

    def _abort(self) -> None:
        self.state = RunState.ABORTED
        if isinstance(self._detailed, DeferredSink):
            self._detailed.flush_to(self.out)
