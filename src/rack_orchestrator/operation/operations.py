"""
Operation info types.

Each operation type carries a type specific info struct. On the wire, and in
task rows, the info is stored as an opaque JSON string next to the type tag.
parse_operation_info turns the pair back into the typed struct.

Every info struct supports
validate
to_json and from_json
description, a short human readable summary used in task listings
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Protocol

from rack_orchestrator.core.errors import ValidationError


class OperationType(StrEnum):
    power_control = "power_control"
    firmware_control = "firmware_control"
    inject_expectation = "inject_expectation"
    unknown = "unknown"


class PowerOperation(StrEnum):
    """
    Power operations.

    power_on, power_off, restart are graceful.
    The force variants skip the graceful path on the BMC.
    warm_reset and cold_reset are hardware level resets.
    """

    power_on = "power_on"
    force_power_on = "force_power_on"
    power_off = "power_off"
    force_power_off = "force_power_off"
    restart = "restart"
    force_restart = "force_restart"
    warm_reset = "warm_reset"
    cold_reset = "cold_reset"
    unknown = "unknown"


class FirmwareOperation(StrEnum):
    upgrade = "upgrade"
    downgrade = "downgrade"
    rollback = "rollback"
    version = "version"
    unknown = "unknown"


class OperationInfo(Protocol):
    """Interface shared by all type specific info structs."""

    @property
    def operation_type(self) -> OperationType:
        """Operation type this info belongs to."""

    def validate(self) -> None:
        """Raise ValidationError when the info is not usable."""

    def to_json(self) -> str:
        """Serialize into the opaque wire form."""

    def description(self) -> str:
        """Short human readable summary."""


def _load_object(raw: str | bytes | None, what: str) -> dict[str, Any]:
    if raw is None or raw == "" or raw == b"":
        raise ValidationError(f"{what} info is empty")
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"failed to unmarshal {what} info: {exc}") from exc
    if not isinstance(data, dict):
        raise ValidationError(f"failed to unmarshal {what} info: expected an object")
    return data


def _parse_enum(enum_cls: type[StrEnum], value: Any, what: str) -> Any:
    if value is None or value == "":
        return enum_cls("unknown")
    try:
        return enum_cls(str(value))
    except ValueError as exc:
        raise ValidationError(f"invalid {what}: {value!r}") from exc


def _parse_bool(value: Any, what: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"invalid {what}: expected a boolean, got {value!r}")
    return value


@dataclass(frozen=True)
class PowerControlInfo:
    operation: PowerOperation = PowerOperation.unknown
    forced: bool = False

    @property
    def operation_type(self) -> OperationType:
        return OperationType.power_control

    def validate(self) -> None:
        if self.operation == PowerOperation.unknown:
            raise ValidationError("invalid power control operation")

    def to_json(self) -> str:
        return json.dumps({"operation": self.operation.value, "forced": self.forced})

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> "PowerControlInfo":
        data = _load_object(raw, "power control")
        return cls(
            operation=_parse_enum(PowerOperation, data.get("operation"), "power operation"),
            forced=_parse_bool(data.get("forced", False), "forced"),
        )

    def description(self) -> str:
        return f"{self.operation}, forced {str(self.forced).lower()}"


@dataclass(frozen=True)
class FirmwareControlInfo:
    """
    Firmware control info.

    start_time and end_time are absolute unix timestamps in seconds.
    Zero means not set.
    """

    operation: FirmwareOperation = FirmwareOperation.unknown
    target_version: str = ""
    start_time: int = 0
    end_time: int = 0

    @property
    def operation_type(self) -> OperationType:
        return OperationType.firmware_control

    def validate(self) -> None:
        if self.operation == FirmwareOperation.unknown:
            raise ValidationError("invalid firmware control operation")
        if self.start_time and self.end_time and self.end_time < self.start_time:
            raise ValidationError("firmware update window ends before it starts")

    def to_json(self) -> str:
        data: dict[str, Any] = {"operation": self.operation.value}
        if self.target_version:
            data["target_version"] = self.target_version
        if self.start_time:
            data["start_time"] = self.start_time
        if self.end_time:
            data["end_time"] = self.end_time
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> "FirmwareControlInfo":
        data = _load_object(raw, "firmware control")
        try:
            start_time = int(data.get("start_time", 0) or 0)
            end_time = int(data.get("end_time", 0) or 0)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"invalid firmware update window: {exc}") from exc

        return cls(
            operation=_parse_enum(FirmwareOperation, data.get("operation"), "firmware operation"),
            target_version=str(data.get("target_version", "") or ""),
            start_time=start_time,
            end_time=end_time,
        )

    def start_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.start_time, tz=timezone.utc)

    def end_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.end_time, tz=timezone.utc)

    def description(self) -> str:
        return f"{self.operation}, target version {self.target_version}"


@dataclass(frozen=True)
class InjectExpectationInfo:
    """
    Expected configuration or state to inject into component managers.

    info is an opaque JSON value interpreted by each component manager.
    """

    info: Any = None

    @property
    def operation_type(self) -> OperationType:
        return OperationType.inject_expectation

    def validate(self) -> None:
        if self.info is None:
            raise ValidationError("invalid info")

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str | bytes | None) -> "InjectExpectationInfo":
        data = _load_object(raw, "inject expectation")
        return cls(info=data.get("info"))

    def description(self) -> str:
        return f"inject expectation: {json.dumps(self.info, sort_keys=True)}"


_INFO_TYPES: dict[OperationType, Any] = {
    OperationType.power_control: PowerControlInfo,
    OperationType.firmware_control: FirmwareControlInfo,
    OperationType.inject_expectation: InjectExpectationInfo,
}


def parse_operation_info(op_type: OperationType, raw: str | bytes | None) -> OperationInfo:
    """
    Parse the opaque info for an operation type.

    Raises ValidationError for unsupported types or malformed payloads.
    The returned struct is not validated here. Callers decide when to validate.
    """
    info_cls = _INFO_TYPES.get(op_type)
    if info_cls is None:
        raise ValidationError(f"unsupported task type: {op_type}")
    return info_cls.from_json(raw)


@dataclass(frozen=True)
class SetFirmwareUpdateTimeWindowRequest:
    """
    Payload of the SetFirmwareUpdateTimeWindow activity.

    component_ids are external ids.
    """

    component_ids: tuple[str, ...]
    start_time: datetime
    end_time: datetime
