"""
In memory component managers.

These managers are used for tests and local simulations.
They behave like a small hardware database keyed by external component id.

Features
- Records every hardware call in one journal shared by all component types,
  so tests can assert cross type ordering
- Tracks power state per component id
- Records firmware update windows and injected expectations
- Can inject failures per component type, either a number of transient
  failures before success, or a permanent error
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from rack_orchestrator.componentmanager.base import ComponentManagerRegistry
from rack_orchestrator.core.types import ComponentType, Target
from rack_orchestrator.operation.operations import (
    FirmwareControlInfo,
    InjectExpectationInfo,
    PowerControlInfo,
    PowerOperation,
    SetFirmwareUpdateTimeWindowRequest,
)

IMPLEMENTATION_NAME = "mock"

_POWER_RESULT = {
    PowerOperation.power_on: "on",
    PowerOperation.force_power_on: "on",
    PowerOperation.power_off: "off",
    PowerOperation.force_power_off: "off",
    PowerOperation.restart: "on",
    PowerOperation.force_restart: "on",
}


@dataclass(frozen=True)
class HardwareCall:
    """One recorded hardware call."""

    method: str
    target: Optional[Target]
    payload: Any


@dataclass
class InMemoryHardware:
    """
    Shared state behind all in memory managers.

    transient_failures
    Mapping of component type to a number of calls that fail before the
    next call succeeds.

    errors
    Mapping of component type to an error raised on every call.
    """

    transient_failures: Dict[ComponentType, int] = field(default_factory=dict)
    errors: Dict[ComponentType, Exception] = field(default_factory=dict)
    firmware_error: Optional[Exception] = None

    journal: List[HardwareCall] = field(default_factory=list)
    power_state: Dict[str, str] = field(default_factory=dict)
    firmware_windows: List[SetFirmwareUpdateTimeWindowRequest] = field(default_factory=list)
    expectations: Dict[str, Any] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def manager(self, component_type: ComponentType) -> "InMemoryComponentManager":
        return InMemoryComponentManager(component_type=component_type, hardware=self)

    def record(self, call: HardwareCall) -> None:
        with self._lock:
            self.journal.append(call)
            typ = call.target.component_type if call.target is not None else None
            if typ is None:
                if self.firmware_error is not None:
                    raise self.firmware_error
                return

            remaining = self.transient_failures.get(typ, 0)
            if remaining > 0:
                self.transient_failures[typ] = remaining - 1
                raise ConnectionError(f"transient failure talking to {typ} BMC")

            error = self.errors.get(typ)
            if error is not None:
                raise error

    def set_power(self, component_ids: tuple[str, ...], state: str) -> None:
        with self._lock:
            for cid in component_ids:
                self.power_state[cid] = state

    def set_expectation(self, component_ids: tuple[str, ...], value: Any) -> None:
        with self._lock:
            for cid in component_ids:
                self.expectations[cid] = value

    def add_window(self, request: SetFirmwareUpdateTimeWindowRequest) -> None:
        with self._lock:
            self.firmware_windows.append(request)

    def calls(self, method: str | None = None) -> List[HardwareCall]:
        with self._lock:
            return [c for c in self.journal if method is None or c.method == method]

    def register(self, registry: ComponentManagerRegistry) -> None:
        """Register a mock factory for every known type and set the firmware scheduler."""
        for typ in ComponentType:
            if typ == ComponentType.unknown:
                continue
            registry.register_factory(typ, IMPLEMENTATION_NAME, lambda t=typ: self.manager(t))
        registry.set_firmware_scheduler(InMemoryFirmwareScheduler(hardware=self))


@dataclass(frozen=True)
class InMemoryComponentManager:
    component_type: ComponentType
    hardware: InMemoryHardware

    def power_control(self, target: Target, info: PowerControlInfo) -> None:
        target.validate()
        self.hardware.record(HardwareCall("power_control", target, info))

        state = _POWER_RESULT.get(info.operation)
        if state is None:
            raise ValueError(f"unsupported power operation: {info.operation}")
        self.hardware.set_power(target.component_ids, state)

    def firmware_control(self, target: Target, info: FirmwareControlInfo) -> None:
        target.validate()
        self.hardware.record(HardwareCall("firmware_control", target, info))

    def inject_expectation(self, target: Target, info: InjectExpectationInfo) -> None:
        target.validate()
        self.hardware.record(HardwareCall("inject_expectation", target, info))
        self.hardware.set_expectation(target.component_ids, info.info)


@dataclass(frozen=True)
class InMemoryFirmwareScheduler:
    hardware: InMemoryHardware

    def set_firmware_update_time_window(self, request: SetFirmwareUpdateTimeWindowRequest) -> None:
        self.hardware.record(HardwareCall("set_firmware_update_time_window", None, request))
        self.hardware.add_window(request)
