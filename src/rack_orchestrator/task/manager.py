"""
Task manager.

Purpose
Accept an operation request, fan it out into one task per rack, and hand each
task to the executor.

Flow
1) Validate the request. Nothing is written for an invalid request.
2) Resolve the target spec into racks.
3) For every rack independently
   create a pending task with a snapshot of the rack's component ids,
   start the workflow for the operation type,
   record the execution id on the task.

Racks are independent. A failure for one rack is logged, audited and
reported in the SubmitResult, and the loop moves on to the next rack.

The manager never changes task status after dispatch except to mark a task
failed when its workflow could not be started. Every later transition belongs
to the workflow.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from rack_orchestrator.core.audit import AuditLogger
from rack_orchestrator.core.errors import DispatchError, NotFoundError, OrchestratorError, ValidationError
from rack_orchestrator.core.types import Rack
from rack_orchestrator.execution.base import Executor
from rack_orchestrator.inventory.store import InventoryStore
from rack_orchestrator.operation.operations import (
    FirmwareControlInfo,
    InjectExpectationInfo,
    OperationInfo,
    PowerControlInfo,
)
from rack_orchestrator.operation.request import OperationRequest
from rack_orchestrator.task.resolver import resolve_target_spec
from rack_orchestrator.task.store import TaskStore
from rack_orchestrator.task.types import (
    ExecutionInfo,
    ExecutionRequest,
    ExecutionResponse,
    Pagination,
    Task,
    TaskListOptions,
    TaskStatus,
    TaskStatusUpdate,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskManagerConfig:
    """
    Task manager configuration.

    wait_for_completion
    Block on each rack's workflow before moving to the next rack. Meant for
    tools and tests. A workflow error then counts as a dispatch failure.

    audit_log_path
    Optional JSON lines audit file for submissions and per rack failures.
    """

    wait_for_completion: bool = False
    audit_log_path: Optional[Path] = None


@dataclass(frozen=True)
class RackSubmission:
    """
    Outcome for one rack.

    task_id is set once the task row exists, even if dispatch failed after.
    error is empty on success.
    """

    rack_id: uuid.UUID
    task_id: Optional[uuid.UUID] = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.task_id is not None and not self.error


@dataclass(frozen=True)
class SubmitResult:
    racks: tuple[RackSubmission, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return bool(self.racks) and all(r.ok for r in self.racks)

    @property
    def failed(self) -> List[RackSubmission]:
        return [r for r in self.racks if not r.ok]

    @property
    def task_ids(self) -> List[uuid.UUID]:
        return [r.task_id for r in self.racks if r.ok and r.task_id is not None]


class TaskManager:
    """
    Entry point for operation requests.

    Dependencies are passed in explicitly. start must be called before the
    first submission and brings up the executor.
    """

    def __init__(
        self,
        inventory: InventoryStore,
        task_store: TaskStore,
        executor: Executor,
        config: TaskManagerConfig | None = None,
    ) -> None:
        self._inventory = inventory
        self._task_store = task_store
        self._executor = executor
        self._config = config or TaskManagerConfig()
        self._audit = AuditLogger(path=self._config.audit_log_path) if self._config.audit_log_path else None
        self._lock = threading.Lock()
        self._started = False
        self._stop = threading.Event()

    def start(self) -> None:
        with self._lock:
            if self._started:
                return
            self._executor.start()
            self._started = True
        logger.info("task manager started with %s executor", self._executor.type)

    def stop(self) -> None:
        """Stop accepting requests and wait for the executor to quiesce."""
        with self._lock:
            if not self._started or self._stop.is_set():
                return
            self._stop.set()
        self._executor.stop()
        logger.info("task manager stopped")

    def submit_task(self, request: OperationRequest) -> List[uuid.UUID]:
        """
        Submit a request and return the ids of tasks that were started.

        Raises ValidationError for an invalid request, NotFoundError when a
        target does not resolve, and DispatchError when no rack could be started.
        """
        result = self.submit(request)
        if not result.task_ids:
            reasons = "; ".join(f"rack {r.rack_id}: {r.error}" for r in result.failed)
            raise DispatchError(f"no task could be started: {reasons}")
        return result.task_ids

    def submit(self, request: OperationRequest) -> SubmitResult:
        """Submit a request and return the outcome for every resolved rack."""
        self._ensure_running()

        request.validate()
        info = request.operation.parse()

        racks = resolve_target_spec(self._inventory, request.target_spec)
        if not racks:
            raise NotFoundError("no racks found for the target spec")

        results = tuple(self._submit_rack(request, info, rack) for rack in racks.values())

        self._audit_event(
            {
                "event": "task_submitted",
                "operation": request.operation.type,
                "racks": len(results),
                "task_ids": [r.task_id for r in results if r.ok],
                "failed": len([r for r in results if not r.ok]),
            }
        )
        return SubmitResult(racks=results)

    def get_tasks(self, task_ids: List[uuid.UUID]) -> List[Task]:
        return self._task_store.get_tasks(task_ids)

    def list_tasks(
        self,
        options: TaskListOptions | None = None,
        pagination: Pagination | None = None,
    ) -> tuple[List[Task], int]:
        return self._task_store.list_tasks(options or TaskListOptions(), pagination or Pagination())

    def _ensure_running(self) -> None:
        if not self._started:
            raise OrchestratorError("task manager is not started")
        if self._stop.is_set():
            raise OrchestratorError("task manager is stopped")

    def _submit_rack(self, request: OperationRequest, info: OperationInfo, rack: Rack) -> RackSubmission:
        task = Task(
            id=uuid.uuid4(),
            operation=request.operation,
            rack_id=rack.id,
            component_uuids=rack.component_ids(),
            description=request.description or info.description(),
        )

        try:
            self._task_store.create_task(task)
        except Exception as exc:
            logger.error("failed to create task for rack %s: %s", rack.id, exc)
            self._audit_event({"event": "task_create_failed", "rack_id": rack.id, "error": str(exc)})
            return RackSubmission(rack_id=rack.id, error=f"create task: {exc}")

        try:
            response = self._dispatch(task.id, info, rack)
        except Exception as exc:
            logger.error("failed to start workflow for task %s on rack %s: %s", task.id, rack.id, exc)
            error = str(exc)
            mark_err = self._mark_failed(task.id, error)
            if mark_err:
                error = f"{error}; {mark_err}"
            self._audit_event(
                {"event": "task_dispatch_failed", "rack_id": rack.id, "task_id": task.id, "error": error}
            )
            return RackSubmission(rack_id=rack.id, task_id=task.id, error=error)

        task.execution_id = response.execution_id
        task.executor_type = self._executor.type
        try:
            self._task_store.update_scheduled_task(task)
        except Exception as exc:
            logger.error("failed to record execution %s on task %s: %s", response.execution_id, task.id, exc)

        logger.info("task %s started on rack %s as %s", task.id, rack.id, response.execution_id)
        return RackSubmission(rack_id=rack.id, task_id=task.id)

    def _dispatch(self, task_id: uuid.UUID, info: OperationInfo, rack: Rack) -> ExecutionResponse:
        request = ExecutionRequest(
            info=ExecutionInfo(task_id=task_id, rack=rack),
            wait=self._config.wait_for_completion,
        )

        if isinstance(info, PowerControlInfo):
            return self._executor.power_control(request, info)
        if isinstance(info, FirmwareControlInfo):
            return self._executor.firmware_control(request, info)
        if isinstance(info, InjectExpectationInfo):
            return self._executor.inject_expectation(request, info)

        raise ValidationError(f"unsupported operation type: {info.operation_type}")

    def _mark_failed(self, task_id: uuid.UUID, message: str) -> str:
        """Best effort failed status. Returns the persistence error text, if any."""
        try:
            self._task_store.update_task_status(
                TaskStatusUpdate(id=task_id, status=TaskStatus.failed, message=message)
            )
        except Exception as exc:
            logger.error("failed to mark task %s failed: %s", task_id, exc)
            return f"mark failed: {exc}"
        return ""

    def _audit_event(self, event: dict) -> None:
        if self._audit is None:
            return
        try:
            self._audit.log(event)
        except OSError as exc:
            logger.warning("audit log write failed: %s", exc)
