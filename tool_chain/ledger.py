"""In-memory task ledger correlating responses with their originating request."""

from __future__ import annotations

import logging
import secrets
import threading
from typing import Optional

import pendulum

from .models import Plan, StepResult, Task, TaskStatus

_log = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 300


def new_reference() -> str:
    """Return a task reference: millisecond timestamp plus a random suffix."""
    now = pendulum.now("UTC")
    return f"task-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


class TaskLedger:
    """Keyed store of tasks.

    Finished tasks remain readable until :meth:`purge_expired` removes them.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tasks: dict[str, Task] = {}

    def create(self, query: str, requester: str) -> str:
        with self._lock:
            reference = new_reference()
            while reference in self._tasks:
                reference = new_reference()
            self._tasks[reference] = Task(reference=reference, query=query, requester=requester)
        _log.debug("Created task %s for %s", reference, requester)
        return reference

    def get(self, reference: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(reference)

    def attach_plan(self, reference: str, plan: Plan) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(reference)
            if task is None:
                return None
            task.plan = plan
            task.status = TaskStatus.EXECUTING
            return task

    def append_result(self, reference: str, result: StepResult) -> bool:
        """Append *result*; refused once the task holds one result per step."""
        with self._lock:
            task = self._tasks.get(reference)
            if task is None or task.status.finished:
                return False
            if len(task.results) >= task.expected_steps:
                _log.warning(
                    "Task %s already has %d/%d results; dropping result for step %d",
                    reference, len(task.results), task.expected_steps, result.step_index,
                )
                return False
            task.results.append(result)
            return True

    def complete(self, reference: str, status: TaskStatus) -> Optional[Task]:
        """Mark the task finished with *status* and stamp its completion time."""
        with self._lock:
            task = self._tasks.get(reference)
            if task is None:
                return None
            task.status = status
            task.completed_at = pendulum.now("UTC")
            return task

    def discard(self, reference: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.pop(reference, None)

    def purge_expired(self, max_age: float = DEFAULT_RETENTION_SECONDS) -> list[str]:
        """Drop tasks older than *max_age* seconds.

        Finished tasks age from their completion time, unfinished ones from
        their creation time.  Returns the purged references.
        """
        cutoff = pendulum.now("UTC").subtract(seconds=max_age)
        with self._lock:
            expired = [
                ref
                for ref, task in self._tasks.items()
                if (task.completed_at or task.created_at) < cutoff
            ]
            for ref in expired:
                del self._tasks[ref]
        for ref in expired:
            _log.info("Cleaning up expired task %s", ref)
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def __contains__(self, reference: str) -> bool:
        with self._lock:
            return reference in self._tasks
