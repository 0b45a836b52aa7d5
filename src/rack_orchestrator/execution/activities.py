"""
Workflow activities.

Activities are the only place where workflows touch the outside world. Each
one is a single remote call that the engine times out and retries.

The activity names below are the contract between workflow definitions and
the engine that executes them. They must not change between versions, since
in flight workflows refer to activities by name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Dict

from rack_orchestrator.componentmanager.base import ComponentManagerRegistry
from rack_orchestrator.core.errors import NotFoundError
from rack_orchestrator.core.types import Target
from rack_orchestrator.execution.base import ActivityOptions, RetryPolicy
from rack_orchestrator.operation.operations import (
    InjectExpectationInfo,
    PowerControlInfo,
    SetFirmwareUpdateTimeWindowRequest,
)
from rack_orchestrator.task.store import TaskStore
from rack_orchestrator.task.types import TaskStatusUpdate

logger = logging.getLogger(__name__)

POWER_CONTROL = "PowerControl"
SET_FIRMWARE_UPDATE_TIME_WINDOW = "SetFirmwareUpdateTimeWindow"
INJECT_EXPECTATION = "InjectExpectation"
UPDATE_TASK_STATUS = "UpdateTaskStatus"

POWER_CONTROL_OPTIONS = ActivityOptions(
    start_to_close_timeout=timedelta(minutes=20),
    retry_policy=RetryPolicy(
        max_attempts=3,
        initial_interval=timedelta(seconds=1),
        maximum_interval=timedelta(minutes=1),
        backoff_coefficient=2.0,
    ),
)

FIRMWARE_WINDOW_OPTIONS = ActivityOptions(
    start_to_close_timeout=timedelta(minutes=30),
    retry_policy=RetryPolicy(
        max_attempts=3,
        initial_interval=timedelta(seconds=5),
        maximum_interval=timedelta(minutes=2),
        backoff_coefficient=2.0,
    ),
)

INJECT_EXPECTATION_OPTIONS = ActivityOptions(
    start_to_close_timeout=timedelta(minutes=10),
    retry_policy=POWER_CONTROL_OPTIONS.retry_policy,
)

UPDATE_TASK_STATUS_OPTIONS = ActivityOptions(
    start_to_close_timeout=timedelta(seconds=30),
    retry_policy=RetryPolicy(
        max_attempts=3,
        initial_interval=timedelta(seconds=1),
        maximum_interval=timedelta(seconds=10),
        backoff_coefficient=2.0,
    ),
)


@dataclass(frozen=True)
class Activities:
    """
    Activity implementations.

    Dependencies are bound at construction. Nothing here reads process wide state.
    """

    registry: ComponentManagerRegistry
    task_store: TaskStore

    def power_control(self, target: Target, info: PowerControlInfo) -> None:
        logger.debug("power control %s op %s activity received", target, info.operation)
        target.validate()
        self.registry.get(target.component_type).power_control(target, info)
        logger.info("power control %s on %s completed", info.operation, target)

    def set_firmware_update_time_window(self, request: SetFirmwareUpdateTimeWindowRequest) -> None:
        logger.debug(
            "set firmware update window for %d component(s) from %s to %s",
            len(request.component_ids),
            request.start_time.isoformat(),
            request.end_time.isoformat(),
        )
        self.registry.firmware_scheduler().set_firmware_update_time_window(request)

    def inject_expectation(self, target: Target, info: InjectExpectationInfo) -> None:
        target.validate()
        self.registry.get(target.component_type).inject_expectation(target, info)

    def update_task_status(self, update: TaskStatusUpdate) -> None:
        self.task_store.update_task_status(update)

    def lookup(self, name: str) -> Callable[..., Any]:
        """Return the implementation registered under an activity name."""
        table: Dict[str, Callable[..., Any]] = {
            POWER_CONTROL: self.power_control,
            SET_FIRMWARE_UPDATE_TIME_WINDOW: self.set_firmware_update_time_window,
            INJECT_EXPECTATION: self.inject_expectation,
            UPDATE_TASK_STATUS: self.update_task_status,
        }
        fn = table.get(name)
        if fn is None:
            raise NotFoundError(f"activity {name!r} is not registered")
        return fn
