"""
Task store.

Persistence contract for task rows plus a thread safe in memory implementation.

Writers only ever touch their own task id, so a single lock around the map is
enough. Status updates are last write wins within the transitions TaskStatus
allows, and re-writing the same status is a no-op apart from the message.
"""

from __future__ import annotations

import copy
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Protocol

from rack_orchestrator.core.errors import NotFoundError, PersistenceError
from rack_orchestrator.operation.operations import OperationType
from rack_orchestrator.task.types import (
    Pagination,
    Task,
    TaskListOptions,
    TaskStatus,
    TaskStatusUpdate,
    utcnow,
)


class TaskStore(Protocol):
    """
    Task persistence interface.

    create_task
    Insert a new row. Fails if the id already exists.

    update_scheduled_task
    Persist execution_id and executor_type after dispatch.

    update_task_status
    Set status and message.

    get_tasks
    Return rows for the given ids. Unknown ids are skipped.

    list_tasks
    Return one page of rows, newest first, plus the total match count.
    """

    def create_task(self, task: Task) -> None:
        """Insert a task row."""

    def update_scheduled_task(self, task: Task) -> None:
        """Persist scheduling metadata."""

    def update_task_status(self, update: TaskStatusUpdate) -> None:
        """Persist a status transition."""

    def get_tasks(self, task_ids: List[uuid.UUID]) -> List[Task]:
        """Fetch tasks by id."""

    def list_tasks(self, options: TaskListOptions, pagination: Pagination) -> tuple[List[Task], int]:
        """Fetch a filtered page of tasks."""


@dataclass
class InMemoryTaskStore:
    """In memory task store. Returned tasks are copies."""

    _tasks: Dict[uuid.UUID, Task] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def create_task(self, task: Task) -> None:
        with self._lock:
            if task.id in self._tasks:
                raise PersistenceError(f"task {task.id} already exists")
            self._tasks[task.id] = copy.deepcopy(task)

    def update_scheduled_task(self, task: Task) -> None:
        with self._lock:
            row = self._get(task.id)
            row.execution_id = task.execution_id
            row.executor_type = task.executor_type
            row.updated_at = utcnow()

    def update_task_status(self, update: TaskStatusUpdate) -> None:
        with self._lock:
            row = self._get(update.id)
            if not row.status.can_transition_to(update.status):
                raise PersistenceError(
                    f"task {update.id} cannot move from {row.status} to {update.status}"
                )

            now = utcnow()
            if update.status == TaskStatus.running and row.started_at is None:
                row.started_at = now
            if update.status.terminal and row.finished_at is None:
                row.finished_at = now

            row.status = update.status
            row.message = update.message
            row.updated_at = now

    def get_tasks(self, task_ids: List[uuid.UUID]) -> List[Task]:
        with self._lock:
            return [copy.deepcopy(self._tasks[tid]) for tid in task_ids if tid in self._tasks]

    def get_task(self, task_id: uuid.UUID) -> Task:
        """Return a single task or raise NotFoundError."""
        with self._lock:
            return copy.deepcopy(self._get(task_id))

    def list_tasks(self, options: TaskListOptions, pagination: Pagination) -> tuple[List[Task], int]:
        pagination.validate()

        with self._lock:
            matches = [t for t in self._tasks.values() if _matches(t, options)]
            matches.sort(key=lambda t: t.created_at, reverse=True)
            page = matches[pagination.offset : pagination.offset + pagination.limit]
            return [copy.deepcopy(t) for t in page], len(matches)

    def _get(self, task_id: uuid.UUID) -> Task:
        row = self._tasks.get(task_id)
        if row is None:
            raise NotFoundError(f"task {task_id} not found")
        return row


def _matches(task: Task, options: TaskListOptions) -> bool:
    if options.task_type != OperationType.unknown and task.operation.type != options.task_type:
        return False
    if options.rack_id is not None and task.rack_id != options.rack_id:
        return False
    if options.active_only and task.status.terminal:
        return False
    return True
