"""
Workflow plumbing shared by all workflow definitions.

Execution model
A workflow is a small state machine over WorkflowState. Its only suspension
points are activity calls made through a WorkflowContext. Everything between
two activity calls is plain deterministic code over the state and the inputs,
so an engine can replay or resume a workflow from its activity history.

Cancellation and deadlines surface as WorkflowCancelled from the next
execute_activity call. Status updates that record the outcome are issued with
detached=True, which the engine runs even after cancellation, so a cancelled
workflow still marks its task failed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, List, Optional, Protocol

from rack_orchestrator.core.errors import OrchestratorError, ValidationError, WorkflowCancelled
from rack_orchestrator.execution.activities import UPDATE_TASK_STATUS, UPDATE_TASK_STATUS_OPTIONS
from rack_orchestrator.execution.base import ActivityOptions
from rack_orchestrator.operation.operations import OperationInfo
from rack_orchestrator.task.types import ExecutionInfo, TaskStatus, TaskStatusUpdate

logger = logging.getLogger(__name__)


class WorkflowContext(Protocol):
    """
    What a workflow may do.

    execute_activity runs one activity to completion, including retries, and
    returns its result or raises the final error.
    """

    def execute_activity(
        self,
        name: str,
        *args: Any,
        options: ActivityOptions,
        detached: bool = False,
    ) -> Any:
        """Run an activity by name."""


class WorkflowPhase(StrEnum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


_PHASE_TRANSITIONS = {
    WorkflowPhase.pending: {WorkflowPhase.running, WorkflowPhase.completed, WorkflowPhase.failed},
    WorkflowPhase.running: {WorkflowPhase.completed, WorkflowPhase.failed},
    WorkflowPhase.completed: set(),
    WorkflowPhase.failed: set(),
}


@dataclass
class WorkflowState:
    """
    Observable state of one workflow run.

    steps records each completed activity step in order, for auditing.
    """

    task_id: uuid.UUID
    phase: WorkflowPhase = WorkflowPhase.pending
    steps: List[str] = field(default_factory=list)
    error: str = ""

    @property
    def done(self) -> bool:
        return self.phase in (WorkflowPhase.completed, WorkflowPhase.failed)

    def advance(self, phase: WorkflowPhase, error: str = "") -> None:
        if phase not in _PHASE_TRANSITIONS[self.phase]:
            raise OrchestratorError(f"workflow for task {self.task_id} cannot move from {self.phase} to {phase}")
        self.phase = phase
        self.error = error


class Workflow:
    """
    Base class for workflow definitions.

    Subclasses set name and implement run. name is part of the execution id and
    must stay stable.
    """

    name = ""

    def __init__(self, execution: ExecutionInfo, info: OperationInfo) -> None:
        self.execution = execution
        self.info = info
        self.state = WorkflowState(task_id=execution.task_id)

    @property
    def task_id(self) -> uuid.UUID:
        return self.execution.task_id

    def run(self, ctx: WorkflowContext) -> None:
        raise NotImplementedError

    def precheck(self) -> Optional[ValidationError]:
        """Return the error for a rack without components or an invalid info, else None."""
        if not self.execution.rack.components:
            return ValidationError("no components in rack")
        try:
            self.info.validate()
        except ValidationError as exc:
            return exc
        return None

    def mark_running(self, ctx: WorkflowContext) -> None:
        """
        Move the task to running.

        A run cancelled or past its deadline before this update still records
        Failed through finish. Any other failure here aborts the workflow before
        any hardware action. The state is marked failed but no further status
        update is attempted.
        """
        try:
            self._update_status(ctx, TaskStatus.running, "Running", detached=False)
        except WorkflowCancelled as exc:
            self.finish(ctx, exc)
            raise
        except Exception as exc:
            self.state.advance(WorkflowPhase.failed, str(exc))
            raise
        self.state.advance(WorkflowPhase.running)

    def finish(self, ctx: WorkflowContext, err: Optional[Exception]) -> None:
        """
        Record the terminal status and return or raise the outcome.

        The raised error is err itself. When the terminal status update fails
        as well, both are raised together in an ExceptionGroup.
        """
        if err is None:
            status, message = TaskStatus.completed, "Completed"
        else:
            status, message = TaskStatus.failed, str(err)

        try:
            self._update_status(ctx, status, message, detached=True)
        except Exception as status_err:
            logger.error("failed to mark task %s %s: %s", self.task_id, status, status_err)
            self.state.advance(WorkflowPhase.failed, str(err or status_err))
            if err is None:
                raise
            raise ExceptionGroup(
                f"{self.name} workflow for task {self.task_id} failed",
                [err, status_err],
            ) from None

        if err is None:
            self.state.advance(WorkflowPhase.completed)
            logger.info("%s workflow for task %s completed", self.name, self.task_id)
            return

        self.state.advance(WorkflowPhase.failed, message)
        logger.warning("%s workflow for task %s failed: %s", self.name, self.task_id, message)
        raise err

    def _update_status(self, ctx: WorkflowContext, status: TaskStatus, message: str, detached: bool) -> None:
        ctx.execute_activity(
            UPDATE_TASK_STATUS,
            TaskStatusUpdate(id=self.task_id, status=status, message=message),
            options=UPDATE_TASK_STATUS_OPTIONS,
            detached=detached,
        )
