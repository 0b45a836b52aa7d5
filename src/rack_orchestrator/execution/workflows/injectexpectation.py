"""
Inject expectation workflow.

Hands the expected configuration or state to the component manager of every
component type present in the rack, one activity call per type.
Types follow the power on order first, then the remaining types in enum order,
so runs are reproducible.

Prechecks match the firmware workflow. A rack without components or an
invalid info moves the task from pending straight to failed.
"""

from __future__ import annotations

from typing import Optional

from rack_orchestrator.core.errors import ValidationError
from rack_orchestrator.core.types import ComponentType, group_targets
from rack_orchestrator.execution.activities import INJECT_EXPECTATION, INJECT_EXPECTATION_OPTIONS
from rack_orchestrator.execution.workflows.common import Workflow, WorkflowContext
from rack_orchestrator.execution.workflows.powercontrol import POWER_ON_ORDER
from rack_orchestrator.operation.operations import InjectExpectationInfo

TYPE_ORDER = POWER_ON_ORDER + tuple(
    t for t in ComponentType if t not in POWER_ON_ORDER and t != ComponentType.unknown
)


class InjectExpectationWorkflow(Workflow):
    name = "InjectExpectation"

    info: InjectExpectationInfo

    def run(self, ctx: WorkflowContext) -> None:
        precheck = self.precheck()
        if precheck is not None:
            self.finish(ctx, precheck)
            return

        self.mark_running(ctx)

        err: Optional[Exception] = None
        try:
            targets = group_targets(self.execution.rack.components)
            if not targets:
                raise ValidationError("no component IDs found")

            for typ in TYPE_ORDER:
                target = targets.get(typ)
                if target is None:
                    continue
                ctx.execute_activity(INJECT_EXPECTATION, target, self.info, options=INJECT_EXPECTATION_OPTIONS)
                self.state.steps.append(f"inject expectation {target}")
        except Exception as exc:
            err = exc

        self.finish(ctx, err)
