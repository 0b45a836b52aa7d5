"""
Task types.

A Task is the persisted, rack scoped record of one submitted operation.
It is a point in time snapshot. component_uuids captures the rack's resolved
components when the task was created, and the task never points at a live Rack.

Status lifecycle
pending -> running -> completed or failed

Terminal states are final. The task manager writes pending at creation, and
failed only when dispatch fails. Every other transition belongs to the
workflow that owns the task.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import List, Optional

from rack_orchestrator.core.errors import ValidationError
from rack_orchestrator.core.types import Rack
from rack_orchestrator.operation.operations import OperationType
from rack_orchestrator.operation.request import OperationWrapper


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TaskStatus(StrEnum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (TaskStatus.completed, TaskStatus.failed)

    def can_transition_to(self, new: "TaskStatus") -> bool:
        """
        Allowed transitions.

        Re-writing the current status is always allowed so retried updates are
        idempotent. Terminal states accept nothing else.
        """
        if new == self:
            return True
        if self.terminal:
            return False
        if self == TaskStatus.running:
            return new.terminal
        return new != TaskStatus.pending


class ExecutorType(StrEnum):
    unknown = "unknown"
    local = "local"


@dataclass
class Task:
    id: uuid.UUID
    operation: OperationWrapper
    rack_id: uuid.UUID
    component_uuids: List[uuid.UUID] = field(default_factory=list)
    description: str = ""
    executor_type: ExecutorType = ExecutorType.unknown
    execution_id: str = ""
    status: TaskStatus = TaskStatus.pending
    message: str = ""
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass(frozen=True)
class TaskStatusUpdate:
    id: uuid.UUID
    status: TaskStatus
    message: str = ""


@dataclass(frozen=True)
class TaskListOptions:
    """
    Task list filter.

    task_type of unknown and rack_id of None mean no filter on that field.
    active_only keeps pending and running tasks.
    """

    task_type: OperationType = OperationType.unknown
    rack_id: Optional[uuid.UUID] = None
    active_only: bool = False


@dataclass(frozen=True)
class Pagination:
    offset: int = 0
    limit: int = 100

    def validate(self) -> None:
        if self.offset < 0:
            raise ValidationError("pagination offset must not be negative")
        if self.limit <= 0:
            raise ValidationError("pagination limit must be positive")


@dataclass(frozen=True)
class ExecutionInfo:
    """What a workflow runs against. rack is the workflow's own snapshot."""

    task_id: uuid.UUID
    rack: Rack


@dataclass(frozen=True)
class ExecutionRequest:
    """
    Executor input.

    wait
    When True the executor blocks until the workflow finishes and re-raises its
    error. When False it returns as soon as the workflow is scheduled.
    """

    info: ExecutionInfo
    wait: bool = False


@dataclass(frozen=True)
class ExecutionResponse:
    execution_id: str
