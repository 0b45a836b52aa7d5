"""
Target resolver.

Turns a TargetSpec into concrete racks with the components to act on.

Rack targets
Each rack is fetched with its components. When component type filters are
present, the rack is pruned to those types before merging.

Component targets
Each component is resolved, its owning rack is fetched without components,
and the component is attached to that rack.

Merging
Several targets can hit the same rack. Their component sets are merged as a
union, deduplicated by internal component id. Two rack targets with different
type filters therefore select the union of both filters. The merged rack is
sealed again so components stay in position order.
"""

from __future__ import annotations

import logging
import uuid
from typing import Dict, Iterable, Optional

from rack_orchestrator.core.errors import NotFoundError, ValidationError
from rack_orchestrator.core.types import Component, Rack
from rack_orchestrator.inventory.store import InventoryStore
from rack_orchestrator.operation.request import ComponentTarget, RackTarget, TargetSpec

logger = logging.getLogger(__name__)


def resolve_target_spec(inventory: InventoryStore, spec: Optional[TargetSpec]) -> Dict[uuid.UUID, Rack]:
    """
    Resolve a target spec into a mapping of rack id to rack.

    Raises ValidationError for a malformed spec and NotFoundError when any
    referenced rack or component does not exist.
    """
    if spec is None:
        raise ValidationError("target spec is nil")
    spec.validate()

    racks: Dict[uuid.UUID, Rack] = {}

    for rt in spec.racks:
        rack = _fetch_rack(inventory, rt)
        components = rack.components
        if rt.component_types:
            wanted = set(rt.component_types)
            components = [c for c in components if c.type in wanted]
        _merge(racks, rack, components)

    for ct in spec.components:
        comp = _fetch_component(inventory, ct)
        if comp.rack_id is None:
            raise NotFoundError(f"component {comp.info.id} has no owning rack")
        rack = inventory.get_rack_by_id(comp.rack_id, with_components=False)
        _merge(racks, rack, [comp])

    logger.debug("resolved target spec into %d rack(s)", len(racks))
    return racks


def _fetch_rack(inventory: InventoryStore, rt: RackTarget) -> Rack:
    ident = rt.identifier
    if ident.id is not None:
        return inventory.get_rack_by_id(ident.id, with_components=True)
    return inventory.get_rack_by_name(ident.name, with_components=True)


def _fetch_component(inventory: InventoryStore, ct: ComponentTarget) -> Component:
    if ct.id is not None:
        return inventory.get_component_by_id(ct.id)

    if ct.external is None:
        raise ValidationError("component target must have either uuid or external set")
    found = inventory.get_components_by_external_ids([ct.external])
    if not found:
        raise NotFoundError(f"component {ct.external.type}/{ct.external.id} not found")
    return found[0]


def _merge(racks: Dict[uuid.UUID, Rack], rack: Rack, components: Iterable[Component]) -> None:
    entry = racks.get(rack.id)
    if entry is None:
        entry = rack.without_components()
        racks[rack.id] = entry

    seen = {c.info.id for c in entry.components}
    for comp in components:
        if comp.info.id in seen:
            continue
        seen.add(comp.info.id)
        comp.rack_id = entry.id
        entry.components.append(comp)

    entry.seal()
