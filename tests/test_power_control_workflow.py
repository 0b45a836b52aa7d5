import uuid
from typing import Any

import pytest

from rack_orchestrator.core.errors import HardwareActionError, PersistenceError, ValidationError, WorkflowCancelled
from rack_orchestrator.core.types import Component, ComponentType, DeviceInfo, InRackPosition, Rack, Target
from rack_orchestrator.execution.activities import POWER_CONTROL, POWER_CONTROL_OPTIONS, UPDATE_TASK_STATUS
from rack_orchestrator.execution.base import ActivityOptions
from rack_orchestrator.execution.workflows.common import WorkflowPhase
from rack_orchestrator.execution.workflows.powercontrol import (
    HARDWARE_RESET_UNSUPPORTED,
    PowerControlWorkflow,
    plan_power_steps,
)
from rack_orchestrator.operation.operations import PowerControlInfo, PowerOperation
from rack_orchestrator.task.types import ExecutionInfo, TaskStatus


class RecordingContext:
    """
    A fake workflow context used for unit tests.

    Records every activity call. Hardware calls for a component type listed in
    fail_on raise the mapped error. status_error makes every status update fail.
    """

    def __init__(
        self,
        fail_on: dict[ComponentType, Exception] | None = None,
        status_error: Exception | None = None,
    ) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], bool]] = []
        self.options: list[ActivityOptions] = []
        self._fail_on = fail_on or {}
        self._status_error = status_error

    def execute_activity(self, name: str, *args: Any, options: ActivityOptions, detached: bool = False) -> Any:
        self.calls.append((name, args, detached))
        self.options.append(options)
        if name == UPDATE_TASK_STATUS and self._status_error is not None:
            raise self._status_error
        if name == POWER_CONTROL:
            err = self._fail_on.get(args[0].component_type)
            if err is not None:
                raise err
        return None

    def power_calls(self) -> list[tuple[ComponentType, PowerOperation]]:
        return [(args[0].component_type, args[1].operation) for name, args, _ in self.calls if name == POWER_CONTROL]

    def statuses(self) -> list[TaskStatus]:
        return [args[0].status for name, args, _ in self.calls if name == UPDATE_TASK_STATUS]


class CancelledContext(RecordingContext):
    """A fake context whose engine refuses every attempted, non detached call."""

    def execute_activity(self, name: str, *args: Any, options: ActivityOptions, detached: bool = False) -> Any:
        if not detached:
            self.calls.append((name, args, detached))
            raise WorkflowCancelled(f"run cancelled before activity {name}")
        return super().execute_activity(name, *args, options=options, detached=detached)


def _make_rack(*typ_ids: tuple[ComponentType, str]) -> Rack:
    rack = Rack(info=DeviceInfo(id=uuid.uuid4(), name="rack-a1"))
    for slot, (typ, ext) in enumerate(typ_ids):
        rack.add_component(
            Component(
                type=typ,
                info=DeviceInfo(id=uuid.uuid4()),
                position=InRackPosition(slot_id=slot),
                component_id=ext,
            )
        )
    return rack


def _full_rack() -> Rack:
    # Deliberately out of power order.
    return _make_rack(
        (ComponentType.compute, "c1"),
        (ComponentType.powershelf, "ps1"),
        (ComponentType.compute, "c2"),
        (ComponentType.nvlswitch, "nvl1"),
    )


def _run(rack: Rack, op: PowerOperation, ctx: RecordingContext) -> PowerControlWorkflow:
    wf = PowerControlWorkflow(ExecutionInfo(task_id=uuid.uuid4(), rack=rack), PowerControlInfo(operation=op))
    wf.run(ctx)
    return wf


def test_power_on_runs_shelves_then_switches_then_compute():
    ctx = RecordingContext()
    wf = _run(_full_rack(), PowerOperation.power_on, ctx)

    assert ctx.power_calls() == [
        (ComponentType.powershelf, PowerOperation.power_on),
        (ComponentType.nvlswitch, PowerOperation.power_on),
        (ComponentType.compute, PowerOperation.power_on),
    ]
    assert ctx.statuses() == [TaskStatus.running, TaskStatus.completed]
    assert wf.state.phase == WorkflowPhase.completed

    compute_target = ctx.calls[3][1][0]
    assert compute_target == Target(component_type=ComponentType.compute, component_ids=("c1", "c2"))
    assert ctx.options[1] == POWER_CONTROL_OPTIONS


def test_power_off_runs_in_reverse_order():
    ctx = RecordingContext()
    _run(_full_rack(), PowerOperation.force_power_off, ctx)

    assert [typ for typ, _ in ctx.power_calls()] == [
        ComponentType.compute,
        ComponentType.nvlswitch,
        ComponentType.powershelf,
    ]


def test_restart_is_full_off_then_full_on():
    ctx = RecordingContext()
    _run(_full_rack(), PowerOperation.restart, ctx)

    assert ctx.power_calls() == [
        (ComponentType.compute, PowerOperation.power_off),
        (ComponentType.nvlswitch, PowerOperation.power_off),
        (ComponentType.powershelf, PowerOperation.power_off),
        (ComponentType.powershelf, PowerOperation.power_on),
        (ComponentType.nvlswitch, PowerOperation.power_on),
        (ComponentType.compute, PowerOperation.power_on),
    ]


def test_force_restart_uses_forced_operations():
    ctx = RecordingContext()
    _run(_full_rack(), PowerOperation.force_restart, ctx)

    ops = [op for _, op in ctx.power_calls()]
    assert ops == [PowerOperation.force_power_off] * 3 + [PowerOperation.force_power_on] * 3


def test_absent_types_are_skipped():
    ctx = RecordingContext()
    _run(_make_rack((ComponentType.compute, "c1"), (ComponentType.powershelf, "ps1")), PowerOperation.power_on, ctx)

    assert [typ for typ, _ in ctx.power_calls()] == [ComponentType.powershelf, ComponentType.compute]


@pytest.mark.parametrize("op", [PowerOperation.warm_reset, PowerOperation.cold_reset])
def test_resets_fail_without_hardware_action(op: PowerOperation):
    ctx = RecordingContext()

    with pytest.raises(ValidationError, match=HARDWARE_RESET_UNSUPPORTED):
        _run(_full_rack(), op, ctx)

    assert ctx.power_calls() == []
    assert ctx.statuses() == [TaskStatus.running, TaskStatus.failed]
    assert ctx.calls[-1][1][0].message == HARDWARE_RESET_UNSUPPORTED


def test_first_failure_stops_the_sequence():
    boom = HardwareActionError(POWER_CONTROL, 3, ConnectionError("bmc unreachable"))
    ctx = RecordingContext(fail_on={ComponentType.compute: boom})

    with pytest.raises(HardwareActionError):
        _run(_full_rack(), PowerOperation.power_on, ctx)

    assert [typ for typ, _ in ctx.power_calls()] == [
        ComponentType.powershelf,
        ComponentType.nvlswitch,
        ComponentType.compute,
    ]
    assert ctx.statuses() == [TaskStatus.running, TaskStatus.failed]


def test_failure_on_shelves_never_reaches_dependents():
    ctx = RecordingContext(fail_on={ComponentType.powershelf: ConnectionError("down")})

    with pytest.raises(ConnectionError):
        _run(_full_rack(), PowerOperation.power_on, ctx)

    assert [typ for typ, _ in ctx.power_calls()] == [ComponentType.powershelf]


def test_empty_rack_is_a_silent_no_op():
    ctx = RecordingContext()
    wf = _run(_make_rack(), PowerOperation.power_on, ctx)

    assert ctx.calls == []
    assert wf.state.phase == WorkflowPhase.pending


def test_components_without_external_ids_complete_with_no_hardware_calls():
    ctx = RecordingContext()
    _run(_make_rack((ComponentType.compute, ""), (ComponentType.powershelf, "")), PowerOperation.power_on, ctx)

    assert ctx.power_calls() == []
    assert ctx.statuses() == [TaskStatus.running, TaskStatus.completed]


def test_running_update_failure_aborts_before_hardware():
    ctx = RecordingContext(status_error=PersistenceError("store down"))

    with pytest.raises(PersistenceError):
        wf = PowerControlWorkflow(
            ExecutionInfo(task_id=uuid.uuid4(), rack=_full_rack()),
            PowerControlInfo(operation=PowerOperation.power_on),
        )
        wf.run(ctx)

    assert ctx.power_calls() == []
    assert ctx.statuses() == [TaskStatus.running]
    assert wf.state.phase == WorkflowPhase.failed


def test_terminal_update_is_detached():
    ctx = RecordingContext()
    _run(_full_rack(), PowerOperation.power_on, ctx)

    status_calls = [detached for name, _, detached in ctx.calls if name == UPDATE_TASK_STATUS]
    assert status_calls == [False, True]


def test_plan_rejects_unknown_operation():
    with pytest.raises(ValidationError, match="unknown power operation"):
        plan_power_steps(PowerControlInfo(operation=PowerOperation.unknown), {})


def test_cancelled_before_running_still_records_failure():
    ctx = CancelledContext()
    wf = PowerControlWorkflow(
        ExecutionInfo(task_id=uuid.uuid4(), rack=_full_rack()),
        PowerControlInfo(operation=PowerOperation.power_on),
    )

    with pytest.raises(WorkflowCancelled):
        wf.run(ctx)

    assert ctx.power_calls() == []
    assert ctx.statuses() == [TaskStatus.running, TaskStatus.failed]
    assert [detached for name, _, detached in ctx.calls if name == UPDATE_TASK_STATUS] == [False, True]
    assert ctx.calls[-1][1][0].message == "run cancelled before activity UpdateTaskStatus"
    assert wf.state.phase == WorkflowPhase.failed
