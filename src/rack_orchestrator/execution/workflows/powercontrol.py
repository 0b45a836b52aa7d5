"""
Power control workflow.

Power sequencing is the correctness guarantee of this workflow.
Compute trays depend on NVLink switches, and both depend on power shelves, so

power on   powershelf -> nvlswitch -> compute
power off  compute -> nvlswitch -> powershelf
restart    the full power off sequence, then the full power on sequence

Each step is one activity call carrying every external id of that type in the
rack. Types not present in the rack are skipped. The first failing step stops
the sequence, so a dependent is never acted on after the thing it depends on
failed.

Hardware level resets are not supported yet and fail before any hardware
action.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from rack_orchestrator.core.errors import ValidationError
from rack_orchestrator.core.types import ComponentType, Target, group_targets
from rack_orchestrator.execution.activities import POWER_CONTROL, POWER_CONTROL_OPTIONS
from rack_orchestrator.execution.workflows.common import Workflow, WorkflowContext
from rack_orchestrator.operation.operations import PowerControlInfo, PowerOperation

logger = logging.getLogger(__name__)

POWER_ON_ORDER = (ComponentType.powershelf, ComponentType.nvlswitch, ComponentType.compute)
POWER_OFF_ORDER = tuple(reversed(POWER_ON_ORDER))

HARDWARE_RESET_UNSUPPORTED = "hardware reset is not supported yet"


@dataclass(frozen=True)
class PowerStep:
    """One activity call of the power sequence."""

    target: Target
    info: PowerControlInfo

    def __str__(self) -> str:
        return f"{self.info.operation} {self.target}"


def _sequence(
    order: tuple[ComponentType, ...],
    targets: Dict[ComponentType, Target],
    info: PowerControlInfo,
) -> List[PowerStep]:
    return [PowerStep(target=targets[typ], info=info) for typ in order if typ in targets]


def plan_power_steps(info: PowerControlInfo, targets: Dict[ComponentType, Target]) -> List[PowerStep]:
    """
    Build the ordered activity steps for a power operation.

    Pure function of its inputs. Raises ValidationError for resets and unknown
    operations.
    """
    op = info.operation

    if op in (PowerOperation.power_on, PowerOperation.force_power_on):
        return _sequence(POWER_ON_ORDER, targets, info)

    if op in (PowerOperation.power_off, PowerOperation.force_power_off):
        return _sequence(POWER_OFF_ORDER, targets, info)

    if op in (PowerOperation.restart, PowerOperation.force_restart):
        forced = op == PowerOperation.force_restart
        off = PowerControlInfo(
            operation=PowerOperation.force_power_off if forced else PowerOperation.power_off,
            forced=info.forced,
        )
        on = PowerControlInfo(
            operation=PowerOperation.force_power_on if forced else PowerOperation.power_on,
            forced=info.forced,
        )
        return _sequence(POWER_OFF_ORDER, targets, off) + _sequence(POWER_ON_ORDER, targets, on)

    if op in (PowerOperation.warm_reset, PowerOperation.cold_reset):
        raise ValidationError(HARDWARE_RESET_UNSUPPORTED)

    raise ValidationError(f"unknown power operation: {op}")


class PowerControlWorkflow(Workflow):
    name = "PowerControl"

    info: PowerControlInfo

    def run(self, ctx: WorkflowContext) -> None:
        rack = self.execution.rack
        if not rack.components:
            # Nothing to sequence. The task is left as it is.
            logger.info("rack %s has no components, nothing to power control", rack.id)
            return

        targets = group_targets(rack.components)

        self.mark_running(ctx)

        err: Optional[Exception] = None
        try:
            for step in plan_power_steps(self.info, targets):
                ctx.execute_activity(POWER_CONTROL, step.target, step.info, options=POWER_CONTROL_OPTIONS)
                self.state.steps.append(str(step))
        except Exception as exc:
            err = exc

        self.finish(ctx, err)
