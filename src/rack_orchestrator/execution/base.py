"""
Execution interfaces.

Goal
Define a stable interface over a durable workflow engine without binding the
task manager to a specific engine.

Design notes
Each operation kind has one entry point. Every entry point takes the task id,
a rack snapshot, and a wait flag, and returns an execution id that is only
used for correlation and auditing.

The execution id is a deterministic function of the workflow name and the task
id. A scheduling call retried for the same task therefore maps to the same run,
and an engine must not start a second run for it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, Protocol

from rack_orchestrator.core.errors import NotFoundError, ValidationError
from rack_orchestrator.core.types import ComponentType
from rack_orchestrator.operation.operations import (
    FirmwareControlInfo,
    InjectExpectationInfo,
    PowerControlInfo,
)
from rack_orchestrator.task.types import ExecutionRequest, ExecutionResponse, ExecutorType


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff for activities.

    max_attempts counts the first attempt.
    non_retryable lists error types that fail the activity on the first attempt.
    """

    max_attempts: int = 3
    initial_interval: timedelta = timedelta(seconds=1)
    maximum_interval: timedelta = timedelta(minutes=1)
    backoff_coefficient: float = 2.0
    non_retryable: tuple[type[BaseException], ...] = (ValidationError, NotFoundError)

    def validate(self) -> None:
        if self.max_attempts < 1:
            raise ValidationError("retry policy needs at least one attempt")
        if self.initial_interval < timedelta(0) or self.maximum_interval < self.initial_interval:
            raise ValidationError("retry policy intervals are inconsistent")
        if self.backoff_coefficient < 1.0:
            raise ValidationError("retry policy backoff coefficient must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given failed attempt, 1 based."""
        raw = self.initial_interval.total_seconds() * (self.backoff_coefficient ** (attempt - 1))
        return min(raw, self.maximum_interval.total_seconds())


@dataclass(frozen=True)
class ActivityOptions:
    """
    Per activity execution options.

    start_to_close_timeout bounds a single attempt.
    """

    start_to_close_timeout: timedelta
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass(frozen=True)
class ExecutorConfig:
    """
    Executor configuration.

    max_workflows
    Number of workflows that may run at the same time.

    max_activities
    Number of activity attempts that may run at the same time.

    workflow_timeout
    Overall deadline of a single workflow run. Checked at activity boundaries.

    implementations
    Component manager implementation name per component type.

    finished_run_limit
    Number of finished runs whose outcome is kept for wait, result and
    duplicate scheduling. The oldest record is dropped first.
    """

    max_workflows: int = 32
    max_activities: int = 64
    workflow_timeout: timedelta = timedelta(hours=4)
    implementations: Dict[ComponentType, str] = field(default_factory=dict)
    finished_run_limit: int = 1024

    def validate(self) -> None:
        if self.max_workflows < 1 or self.max_activities < 1:
            raise ValidationError("executor pools need at least one worker")
        if self.workflow_timeout <= timedelta(0):
            raise ValidationError("workflow timeout must be positive")
        if self.finished_run_limit < 0:
            raise ValidationError("finished run limit must not be negative")
        if ComponentType.unknown in self.implementations:
            raise ValidationError("cannot configure a component manager for unknown components")


def execution_id_for(workflow_name: str, task_id: uuid.UUID) -> str:
    """Deterministic execution id of the workflow run owning a task."""
    return f"{workflow_name}-{task_id}"


class Executor(Protocol):
    """
    Execution interface expected by the task manager.

    start and stop bracket the engine's lifetime. stop waits for in flight
    workflows to reach a suspension point and finish.
    """

    @property
    def type(self) -> ExecutorType:
        """Executor type recorded on scheduled tasks."""

    def start(self) -> None:
        """Bring the engine up."""

    def stop(self) -> None:
        """Cancel running workflows and wait for quiescence."""

    def power_control(self, request: ExecutionRequest, info: PowerControlInfo) -> ExecutionResponse:
        """Start a power control workflow."""

    def firmware_control(self, request: ExecutionRequest, info: FirmwareControlInfo) -> ExecutionResponse:
        """Start a firmware control workflow."""

    def inject_expectation(self, request: ExecutionRequest, info: InjectExpectationInfo) -> ExecutionResponse:
        """Start an inject expectation workflow."""
