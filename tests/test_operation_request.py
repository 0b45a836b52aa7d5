import uuid

import pytest

from rack_orchestrator.core.errors import ValidationError
from rack_orchestrator.core.types import ComponentType
from rack_orchestrator.operation.operations import (
    FirmwareControlInfo,
    FirmwareOperation,
    InjectExpectationInfo,
    OperationType,
    PowerControlInfo,
    PowerOperation,
    parse_operation_info,
)
from rack_orchestrator.operation.request import (
    ComponentTarget,
    ExternalRef,
    OperationRequest,
    OperationWrapper,
    RackIdentifier,
    RackTarget,
    TargetSpec,
    component_targets,
    rack_targets,
)


def _power_request(spec: TargetSpec | None, op: PowerOperation = PowerOperation.power_on) -> OperationRequest:
    return OperationRequest(
        operation=OperationWrapper.wrap(PowerControlInfo(operation=op)),
        target_spec=spec,
    )


def test_power_info_survives_the_wrapper():
    wrapper = OperationWrapper.wrap(PowerControlInfo(operation=PowerOperation.force_restart, forced=True))

    assert wrapper.type == OperationType.power_control
    info = wrapper.parse()
    assert info == PowerControlInfo(operation=PowerOperation.force_restart, forced=True)


def test_firmware_info_parses_window():
    raw = '{"operation": "upgrade", "target_version": "1.2.3", "start_time": 100, "end_time": 200}'
    info = parse_operation_info(OperationType.firmware_control, raw)

    assert isinstance(info, FirmwareControlInfo)
    assert info.operation == FirmwareOperation.upgrade
    assert info.target_version == "1.2.3"
    assert info.start_datetime().timestamp() == 100
    assert info.end_datetime().timestamp() == 200


def test_parse_rejects_bad_payloads():
    with pytest.raises(ValidationError):
        parse_operation_info(OperationType.power_control, "")
    with pytest.raises(ValidationError):
        parse_operation_info(OperationType.power_control, "[1, 2]")
    with pytest.raises(ValidationError):
        parse_operation_info(OperationType.power_control, '{"operation": "explode"}')
    with pytest.raises(ValidationError, match="unsupported task type"):
        parse_operation_info(OperationType.unknown, "{}")


def test_info_validation():
    with pytest.raises(ValidationError, match="invalid power control operation"):
        PowerControlInfo().validate()

    with pytest.raises(ValidationError):
        FirmwareControlInfo(operation=FirmwareOperation.upgrade, start_time=200, end_time=100).validate()

    with pytest.raises(ValidationError, match="invalid info"):
        InjectExpectationInfo().validate()

    InjectExpectationInfo(info={"bios": {"mode": "uefi"}}).validate()


def test_target_spec_needs_exactly_one_branch():
    rack = RackTarget(identifier=RackIdentifier(name="rack-a1"))
    comp = ComponentTarget(id=uuid.uuid4())

    TargetSpec(racks=(rack,)).validate()
    TargetSpec(components=(comp,)).validate()

    with pytest.raises(ValidationError):
        TargetSpec().validate()
    with pytest.raises(ValidationError):
        TargetSpec(racks=(rack,), components=(comp,)).validate()


def test_identifiers_need_exactly_one_key():
    with pytest.raises(ValidationError):
        RackIdentifier().validate()
    with pytest.raises(ValidationError):
        RackIdentifier(id=uuid.uuid4(), name="rack-a1").validate()
    with pytest.raises(ValidationError):
        ComponentTarget().validate()
    with pytest.raises(ValidationError):
        ComponentTarget(id=uuid.uuid4(), external=ExternalRef(type=ComponentType.compute, id="c1")).validate()
    with pytest.raises(ValidationError):
        ComponentTarget(external=ExternalRef(type=ComponentType.unknown, id="c1")).validate()


def test_request_validation_order():
    unknown = OperationRequest(operation=OperationWrapper(type=OperationType.unknown, info="{}"), target_spec=None)
    with pytest.raises(ValidationError, match="operation type is unknown"):
        unknown.validate()

    with pytest.raises(ValidationError, match="invalid power control operation"):
        _power_request(None, op=PowerOperation.unknown).validate()

    with pytest.raises(ValidationError, match="target_spec is required"):
        _power_request(None).validate()

    _power_request(rack_targets("rack-a1")).validate()


def test_builders():
    rid = uuid.uuid4()
    spec = rack_targets(rid, "rack-b", component_types=[ComponentType.compute])

    assert spec.racks[0].identifier.id == rid
    assert spec.racks[1].identifier.name == "rack-b"
    assert spec.racks[1].component_types == (ComponentType.compute,)

    ref = ExternalRef(type=ComponentType.powershelf, id="ps-1")
    spec = component_targets(rid, ref)
    assert spec.components[0].id == rid
    assert spec.components[1].external == ref


def test_forced_must_be_a_json_boolean():
    assert PowerControlInfo.from_json('{"operation": "power_on", "forced": true}').forced is True
    assert PowerControlInfo.from_json('{"operation": "power_on"}').forced is False

    with pytest.raises(ValidationError, match="invalid forced"):
        PowerControlInfo.from_json('{"operation": "power_on", "forced": "false"}')
    with pytest.raises(ValidationError, match="invalid forced"):
        PowerControlInfo.from_json('{"operation": "power_on", "forced": 1}')
