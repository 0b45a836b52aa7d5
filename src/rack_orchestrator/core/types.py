"""
Core types.

This file defines the rack and component model shared across the engine.

Important design choice
A Rack is an aggregate that owns an ordered list of components.
Tasks never hold a reference to a live Rack. They snapshot component ids
at creation time, and workflows receive their own copy of the rack.

Two identifiers per component
info.id is the internal unique id assigned by the inventory.
component_id is the external id assigned by a system of record, for example a
fleet manager machine id. Hardware actions are always addressed by the
external id, so components without one cannot be acted on.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Dict, List, Optional

from rack_orchestrator.core.errors import ValidationError


class ComponentType(StrEnum):
    """
    Component types found in a rack.

    compute
      Compute tray, usually addressed through a host BMC.

    nvlswitch
      NVLink switch tray.

    powershelf
      Power shelf feeding the rack.

    torswitch
      Top of rack switch.

    ums
      Utility management system.

    cdu
      Coolant distribution unit.
    """

    compute = "compute"
    nvlswitch = "nvlswitch"
    powershelf = "powershelf"
    torswitch = "torswitch"
    ums = "ums"
    cdu = "cdu"
    unknown = "unknown"


class BMCType(StrEnum):
    host = "host"
    dpu = "dpu"
    unknown = "unknown"


@dataclass
class DeviceInfo:
    """
    Identity shared by racks and components.

    id is the internal unique id.
    """

    id: uuid.UUID
    name: str = ""
    manufacturer: str = ""
    model: str = ""
    serial_number: str = ""
    description: str = ""


@dataclass
class Location:
    """Physical location of a rack."""

    region: str = ""
    datacenter: str = ""
    room: str = ""
    position: str = ""


@dataclass(frozen=True, order=True)
class InRackPosition:
    """
    Position of a component inside its rack.

    Ordering compares slot_id first, then tray_index, then host_id, which is the
    order components are sealed into a rack.
    """

    slot_id: int = 0
    tray_index: int = 0
    host_id: int = 0


@dataclass
class BMC:
    """Out of band management endpoint."""

    mac: str
    ip_address: str = ""
    user: str = ""


@dataclass
class Component:
    """
    A managed hardware unit.

    component_id
    External identifier. May be empty when the system of record does not know
    the component yet.

    rack_id
    Owning rack. None only for detached components.
    """

    type: ComponentType
    info: DeviceInfo
    firmware_version: str = ""
    position: InRackPosition = field(default_factory=InRackPosition)
    component_id: str = ""
    bmcs_by_type: Dict[BMCType, List[BMC]] = field(default_factory=dict)
    rack_id: Optional[uuid.UUID] = None


@dataclass
class Rack:
    """
    A rack aggregate.

    components are kept sorted by in rack position. add_component keeps the
    order stable for components sharing a position.
    """

    info: DeviceInfo
    location: Location = field(default_factory=Location)
    components: List[Component] = field(default_factory=list)

    @property
    def id(self) -> uuid.UUID:
        return self.info.id

    def add_component(self, comp: Component) -> None:
        """Attach a component and keep the sealed position order."""
        comp.rack_id = self.info.id
        self.components.append(comp)
        self.seal()

    def seal(self) -> None:
        """Sort components by position. sorted is stable, so ties keep insert order."""
        self.components = sorted(self.components, key=lambda c: c.position)

    def component_ids(self) -> List[uuid.UUID]:
        """Internal ids of all components, in rack order."""
        return [c.info.id for c in self.components]

    def without_components(self) -> "Rack":
        """Return a shallow copy of the rack with an empty component list."""
        return Rack(info=self.info, location=self.location, components=[])


@dataclass(frozen=True)
class Target:
    """
    One hardware activity payload.

    All external ids of a single component type within one rack.
    """

    component_type: ComponentType
    component_ids: tuple[str, ...]

    def validate(self) -> None:
        if self.component_type == ComponentType.unknown:
            raise ValidationError("target component type is unknown")
        if not self.component_ids:
            raise ValidationError(f"target {self.component_type} has no component ids")

    def __str__(self) -> str:
        return f"{self.component_type}[{', '.join(self.component_ids)}]"


def group_targets(components: List[Component]) -> Dict[ComponentType, Target]:
    """
    Partition components into per type targets.

    Components without an external id are dropped, and a type whose components
    all lack one does not appear in the result.
    Ids keep rack order inside each target.
    """
    ids: Dict[ComponentType, List[str]] = {}
    for comp in components:
        if not comp.component_id:
            continue
        ids.setdefault(comp.type, []).append(comp.component_id)

    return {typ: Target(component_type=typ, component_ids=tuple(vals)) for typ, vals in ids.items()}
