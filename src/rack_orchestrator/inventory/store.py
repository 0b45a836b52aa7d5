"""
Inventory store.

The inventory store is read only from the point of view of the engine.
Production deployments back it with a database. InMemoryInventoryStore is the
normalized in memory view used for development and tests.

Every lookup returns a copy. Callers such as the target resolver prune and
merge component lists, and that must never leak back into the inventory.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Protocol

from rack_orchestrator.core.errors import NotFoundError
from rack_orchestrator.core.types import Component, ComponentType, Rack
from rack_orchestrator.operation.request import ExternalRef


class InventoryStore(Protocol):
    """
    Read only inventory interface.

    All lookups raise NotFoundError when the object does not exist.
    """

    def get_rack_by_id(self, rack_id: uuid.UUID, with_components: bool = True) -> Rack:
        """Return the rack with the given internal id."""

    def get_rack_by_name(self, name: str, with_components: bool = True) -> Rack:
        """Return the rack with the given name."""

    def get_component_by_id(self, component_id: uuid.UUID) -> Component:
        """Return the component with the given internal id."""

    def get_components_by_external_ids(self, refs: List[ExternalRef]) -> List[Component]:
        """Return one component per external reference, in request order."""


@dataclass
class InMemoryInventoryStore:
    """
    Rack registry keyed by rack id.

    Components are indexed by internal id and by (type, external id) so every
    InventoryStore lookup is a dictionary hit.
    """

    _racks: Dict[uuid.UUID, Rack] = field(default_factory=dict)
    _rack_names: Dict[str, uuid.UUID] = field(default_factory=dict)
    _components: Dict[uuid.UUID, Component] = field(default_factory=dict)
    _external: Dict[tuple[ComponentType, str], uuid.UUID] = field(default_factory=dict)

    def add(self, rack: Rack) -> None:
        """Add or replace a rack and index its components."""
        old = self._racks.get(rack.id)
        if old is not None:
            self._rack_names.pop(old.info.name, None)
            for comp in old.components:
                self._components.pop(comp.info.id, None)
                self._external.pop((comp.type, comp.component_id), None)

        rack.seal()
        self._racks[rack.id] = rack
        if rack.info.name:
            self._rack_names[rack.info.name] = rack.id

        for comp in rack.components:
            comp.rack_id = rack.id
            self._components[comp.info.id] = comp
            if comp.component_id:
                self._external[(comp.type, comp.component_id)] = comp.info.id

    def get_rack_by_id(self, rack_id: uuid.UUID, with_components: bool = True) -> Rack:
        rack = self._racks.get(rack_id)
        if rack is None:
            raise NotFoundError(f"rack {rack_id} not found")
        return self._copy_rack(rack, with_components)

    def get_rack_by_name(self, name: str, with_components: bool = True) -> Rack:
        rack_id = self._rack_names.get(name)
        if rack_id is None:
            raise NotFoundError(f"rack {name!r} not found")
        return self._copy_rack(self._racks[rack_id], with_components)

    def get_component_by_id(self, component_id: uuid.UUID) -> Component:
        comp = self._components.get(component_id)
        if comp is None:
            raise NotFoundError(f"component {component_id} not found")
        return copy.deepcopy(comp)

    def get_components_by_external_ids(self, refs: List[ExternalRef]) -> List[Component]:
        out: List[Component] = []
        for ref in refs:
            comp_id = self._external.get((ref.type, ref.id))
            if comp_id is None:
                raise NotFoundError(f"component {ref.type}/{ref.id} not found")
            out.append(copy.deepcopy(self._components[comp_id]))
        return out

    def racks(self) -> List[Rack]:
        """Return all racks, sorted by name for deterministic outputs."""
        return sorted(self._racks.values(), key=lambda r: r.info.name)

    @staticmethod
    def _copy_rack(rack: Rack, with_components: bool) -> Rack:
        if with_components:
            return copy.deepcopy(rack)
        return copy.deepcopy(rack.without_components())
