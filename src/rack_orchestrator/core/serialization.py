from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import datetime
from enum import Enum
from typing import Any

from rack_orchestrator.core.types import (
    BMC,
    BMCType,
    Component,
    ComponentType,
    DeviceInfo,
    InRackPosition,
    Location,
    Rack,
)


def _normalize(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(_normalize(k)): _normalize(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_normalize(v) for v in obj]
    return obj


def to_json_safe_dict(obj: Any) -> dict[str, Any]:
    """
    Convert a dataclass object into a JSON safe dict.

    Enums become their values, UUIDs and datetimes become strings.
    """
    raw = asdict(obj)
    normalized = _normalize(raw)
    if not isinstance(normalized, dict):
        raise TypeError("expected dict after normalization")
    return normalized


def _parse_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if not value:
        return uuid.uuid4()
    return uuid.UUID(str(value))


def _device_info_from_dict(obj: dict[str, Any]) -> DeviceInfo:
    return DeviceInfo(
        id=_parse_uuid(obj.get("id")),
        name=str(obj.get("name", "")),
        manufacturer=str(obj.get("manufacturer", "")),
        model=str(obj.get("model", "")),
        serial_number=str(obj.get("serial_number", "")),
        description=str(obj.get("description", "")),
    )


def component_from_dict(obj: dict[str, Any]) -> Component:
    """Convert a component dict into a Component."""
    position_obj = obj.get("position", {}) or {}
    bmcs_obj = obj.get("bmcs_by_type", {}) or {}

    bmcs: dict[BMCType, list[BMC]] = {}
    for typ, raw_list in bmcs_obj.items():
        bmcs[BMCType(typ)] = [
            BMC(
                mac=str(raw.get("mac", "")),
                ip_address=str(raw.get("ip_address", "")),
                user=str(raw.get("user", "")),
            )
            for raw in raw_list or []
            if isinstance(raw, dict)
        ]

    rack_id = obj.get("rack_id")
    return Component(
        type=ComponentType(str(obj.get("type", "unknown"))),
        info=_device_info_from_dict(obj.get("info", {}) or {}),
        firmware_version=str(obj.get("firmware_version", "")),
        position=InRackPosition(
            slot_id=int(position_obj.get("slot_id", 0)),
            tray_index=int(position_obj.get("tray_index", 0)),
            host_id=int(position_obj.get("host_id", 0)),
        ),
        component_id=str(obj.get("component_id", "") or ""),
        bmcs_by_type=bmcs,
        rack_id=_parse_uuid(rack_id) if rack_id else None,
    )


def rack_from_dict(obj: dict[str, Any]) -> Rack:
    """
    Convert a rack dict into a sealed Rack.

    Components are attached through add_component so their rack_id points at
    this rack regardless of what the payload says.
    """
    location_obj = obj.get("location", {}) or {}
    rack = Rack(
        info=_device_info_from_dict(obj.get("info", {}) or {}),
        location=Location(
            region=str(location_obj.get("region", "")),
            datacenter=str(location_obj.get("datacenter", "")),
            room=str(location_obj.get("room", "")),
            position=str(location_obj.get("position", "")),
        ),
    )

    for raw in obj.get("components", []) or []:
        if isinstance(raw, dict):
            rack.add_component(component_from_dict(raw))

    return rack


def rack_to_dict(rack: Rack) -> dict[str, Any]:
    """Rack transport shape, the inverse of rack_from_dict."""
    return to_json_safe_dict(rack)
