import uuid
from typing import Any

import pytest

from rack_orchestrator.core.errors import ValidationError
from rack_orchestrator.core.types import Component, ComponentType, DeviceInfo, InRackPosition, Rack
from rack_orchestrator.execution.activities import (
    FIRMWARE_WINDOW_OPTIONS,
    INJECT_EXPECTATION,
    SET_FIRMWARE_UPDATE_TIME_WINDOW,
    UPDATE_TASK_STATUS,
)
from rack_orchestrator.execution.base import ActivityOptions
from rack_orchestrator.execution.workflows.firmwarecontrol import FirmwareControlWorkflow
from rack_orchestrator.execution.workflows.injectexpectation import InjectExpectationWorkflow
from rack_orchestrator.operation.operations import (
    FirmwareControlInfo,
    FirmwareOperation,
    InjectExpectationInfo,
    SetFirmwareUpdateTimeWindowRequest,
)
from rack_orchestrator.task.types import ExecutionInfo, TaskStatus


class RecordingContext:
    def __init__(self, fail: dict[str, Exception] | None = None) -> None:
        self.calls: list[tuple[str, tuple[Any, ...], ActivityOptions]] = []
        self._fail = fail or {}

    def execute_activity(self, name: str, *args: Any, options: ActivityOptions, detached: bool = False) -> Any:
        self.calls.append((name, args, options))
        err = self._fail.get(name)
        if err is not None:
            raise err
        return None

    def named(self, name: str) -> list[tuple[Any, ...]]:
        return [args for n, args, _ in self.calls if n == name]

    def statuses(self) -> list[tuple[TaskStatus, str]]:
        return [(args[0].status, args[0].message) for args in self.named(UPDATE_TASK_STATUS)]


def _make_rack(*typ_ids: tuple[ComponentType, str]) -> Rack:
    rack = Rack(info=DeviceInfo(id=uuid.uuid4(), name="rack-a1"))
    for slot, (typ, ext) in enumerate(typ_ids):
        rack.add_component(
            Component(type=typ, info=DeviceInfo(id=uuid.uuid4()), position=InRackPosition(slot_id=slot), component_id=ext)
        )
    return rack


def _firmware(start: int = 1_700_000_000, end: int = 1_700_003_600) -> FirmwareControlInfo:
    return FirmwareControlInfo(operation=FirmwareOperation.upgrade, target_version="2.1", start_time=start, end_time=end)


def test_firmware_opens_one_window_for_all_components():
    ctx = RecordingContext()
    rack = _make_rack((ComponentType.compute, "c1"), (ComponentType.powershelf, ""), (ComponentType.nvlswitch, "n1"))
    info = _firmware()

    FirmwareControlWorkflow(ExecutionInfo(task_id=uuid.uuid4(), rack=rack), info).run(ctx)

    windows = ctx.named(SET_FIRMWARE_UPDATE_TIME_WINDOW)
    assert len(windows) == 1
    request = windows[0][0]
    assert isinstance(request, SetFirmwareUpdateTimeWindowRequest)
    assert request.component_ids == ("c1", "n1")
    assert request.start_time == info.start_datetime()
    assert request.end_time == info.end_datetime()
    assert ctx.calls[1][2] == FIRMWARE_WINDOW_OPTIONS
    assert ctx.statuses() == [(TaskStatus.running, "Running"), (TaskStatus.completed, "Completed")]


def test_firmware_without_external_ids_fails():
    ctx = RecordingContext()
    rack = _make_rack((ComponentType.compute, ""))

    with pytest.raises(ValidationError, match="no component IDs found"):
        FirmwareControlWorkflow(ExecutionInfo(task_id=uuid.uuid4(), rack=rack), _firmware()).run(ctx)

    assert ctx.named(SET_FIRMWARE_UPDATE_TIME_WINDOW) == []
    assert ctx.statuses()[-1] == (TaskStatus.failed, "no component IDs found")


def test_firmware_prechecks_fail_task_before_running():
    ctx = RecordingContext()

    with pytest.raises(ValidationError, match="no components in rack"):
        FirmwareControlWorkflow(ExecutionInfo(task_id=uuid.uuid4(), rack=_make_rack()), _firmware()).run(ctx)

    with pytest.raises(ValidationError):
        FirmwareControlWorkflow(
            ExecutionInfo(task_id=uuid.uuid4(), rack=_make_rack((ComponentType.compute, "c1"))),
            _firmware(start=200, end=100),
        ).run(ctx)

    assert [status for status, _ in ctx.statuses()] == [TaskStatus.failed, TaskStatus.failed]


def test_firmware_scheduler_error_marks_failed():
    ctx = RecordingContext(fail={SET_FIRMWARE_UPDATE_TIME_WINDOW: ConnectionError("fleet manager down")})

    with pytest.raises(ConnectionError):
        FirmwareControlWorkflow(
            ExecutionInfo(task_id=uuid.uuid4(), rack=_make_rack((ComponentType.compute, "c1"))),
            _firmware(),
        ).run(ctx)

    assert ctx.statuses()[-1] == (TaskStatus.failed, "fleet manager down")


def test_inject_expectation_calls_each_type_in_stable_order():
    ctx = RecordingContext()
    rack = _make_rack(
        (ComponentType.torswitch, "tor1"),
        (ComponentType.compute, "c1"),
        (ComponentType.powershelf, "ps1"),
        (ComponentType.cdu, ""),
    )
    info = InjectExpectationInfo(info={"firmware": "2.1"})

    InjectExpectationWorkflow(ExecutionInfo(task_id=uuid.uuid4(), rack=rack), info).run(ctx)

    targets = [args[0] for args in ctx.named(INJECT_EXPECTATION)]
    assert [t.component_type for t in targets] == [
        ComponentType.powershelf,
        ComponentType.compute,
        ComponentType.torswitch,
    ]
    assert all(args[1] == info for args in ctx.named(INJECT_EXPECTATION))
    assert ctx.statuses()[-1][0] == TaskStatus.completed


def test_inject_expectation_invalid_info_fails_task():
    ctx = RecordingContext()

    with pytest.raises(ValidationError, match="invalid info"):
        InjectExpectationWorkflow(
            ExecutionInfo(task_id=uuid.uuid4(), rack=_make_rack((ComponentType.compute, "c1"))),
            InjectExpectationInfo(),
        ).run(ctx)

    assert ctx.named(INJECT_EXPECTATION) == []
    assert ctx.statuses() == [(TaskStatus.failed, "invalid info")]


def test_status_and_activity_failure_are_both_raised():
    ctx = RecordingContext(
        fail={
            INJECT_EXPECTATION: ConnectionError("bmc down"),
        }
    )
    wf = InjectExpectationWorkflow(
        ExecutionInfo(task_id=uuid.uuid4(), rack=_make_rack((ComponentType.compute, "c1"))),
        InjectExpectationInfo(info={"k": 1}),
    )

    def fail_terminal(name: str, *args: Any, options: ActivityOptions, detached: bool = False) -> Any:
        if name == UPDATE_TASK_STATUS and detached:
            raise RuntimeError("store down")
        return RecordingContext.execute_activity(ctx, name, *args, options=options, detached=detached)

    ctx.execute_activity = fail_terminal  # type: ignore[method-assign]

    with pytest.raises(ExceptionGroup) as info:
        wf.run(ctx)

    kinds = {type(e) for e in info.value.exceptions}
    assert kinds == {ConnectionError, RuntimeError}
