"""
Firmware control workflow.

Firmware updates themselves are carried out by the fleet manager. This
workflow opens the update window for every machine in the rack with one
activity call, then records the outcome on the task.

A rack without components or an invalid info fails before the Running update.
The task still moves from pending to failed with the precheck message, so a
rejected run never leaves a pending row behind.
"""

from __future__ import annotations

from typing import Optional

from rack_orchestrator.core.errors import ValidationError
from rack_orchestrator.execution.activities import (
    FIRMWARE_WINDOW_OPTIONS,
    SET_FIRMWARE_UPDATE_TIME_WINDOW,
)
from rack_orchestrator.execution.workflows.common import Workflow, WorkflowContext
from rack_orchestrator.operation.operations import (
    FirmwareControlInfo,
    SetFirmwareUpdateTimeWindowRequest,
)


class FirmwareControlWorkflow(Workflow):
    name = "FirmwareControl"

    info: FirmwareControlInfo

    def run(self, ctx: WorkflowContext) -> None:
        precheck = self.precheck()
        if precheck is not None:
            self.finish(ctx, precheck)
            return

        self.mark_running(ctx)

        err: Optional[Exception] = None
        try:
            component_ids = tuple(c.component_id for c in self.execution.rack.components if c.component_id)
            if not component_ids:
                raise ValidationError("no component IDs found")

            request = SetFirmwareUpdateTimeWindowRequest(
                component_ids=component_ids,
                start_time=self.info.start_datetime(),
                end_time=self.info.end_datetime(),
            )
            ctx.execute_activity(SET_FIRMWARE_UPDATE_TIME_WINDOW, request, options=FIRMWARE_WINDOW_OPTIONS)
            self.state.steps.append(f"firmware window for {len(component_ids)} component(s)")
        except Exception as exc:
            err = exc

        self.finish(ctx, err)
