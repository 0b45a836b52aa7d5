import uuid

import pytest

from rack_orchestrator.core.errors import NotFoundError, ValidationError
from rack_orchestrator.core.types import Component, ComponentType, DeviceInfo, InRackPosition, Rack
from rack_orchestrator.inventory.store import InMemoryInventoryStore
from rack_orchestrator.operation.request import (
    ComponentTarget,
    ExternalRef,
    RackIdentifier,
    RackTarget,
    TargetSpec,
    component_targets,
    rack_targets,
)
from rack_orchestrator.task.resolver import _fetch_component, resolve_target_spec


def _add_rack(store: InMemoryInventoryStore, name: str) -> Rack:
    rack = Rack(info=DeviceInfo(id=uuid.uuid4(), name=name))
    for slot, (typ, ext) in enumerate(
        [
            (ComponentType.powershelf, f"{name}-ps1"),
            (ComponentType.nvlswitch, f"{name}-nvl1"),
            (ComponentType.compute, f"{name}-c1"),
            (ComponentType.compute, f"{name}-c2"),
        ],
        start=1,
    ):
        rack.add_component(
            Component(
                type=typ,
                info=DeviceInfo(id=uuid.uuid4(), name=ext),
                position=InRackPosition(slot_id=slot),
                component_id=ext,
            )
        )
    store.add(rack)
    return rack


def test_rack_targets_by_id_and_name():
    store = InMemoryInventoryStore()
    a = _add_rack(store, "rack-a")
    b = _add_rack(store, "rack-b")

    racks = resolve_target_spec(store, rack_targets(a.id, "rack-b"))

    assert set(racks) == {a.id, b.id}
    assert racks[a.id].component_ids() == a.component_ids()


def test_type_filter_prunes_components():
    store = InMemoryInventoryStore()
    a = _add_rack(store, "rack-a")

    racks = resolve_target_spec(store, rack_targets(a.id, component_types=[ComponentType.compute]))

    assert [c.component_id for c in racks[a.id].components] == ["rack-a-c1", "rack-a-c2"]


def test_conflicting_type_filters_on_one_rack_are_merged():
    store = InMemoryInventoryStore()
    a = _add_rack(store, "rack-a")
    spec = TargetSpec(
        racks=(
            RackTarget(identifier=RackIdentifier(id=a.id), component_types=(ComponentType.compute,)),
            RackTarget(identifier=RackIdentifier(name="rack-a"), component_types=(ComponentType.powershelf,)),
        )
    )

    racks = resolve_target_spec(store, spec)

    assert len(racks) == 1
    assert [c.component_id for c in racks[a.id].components] == ["rack-a-ps1", "rack-a-c1", "rack-a-c2"]


def test_component_targets_group_by_owning_rack():
    store = InMemoryInventoryStore()
    a = _add_rack(store, "rack-a")
    b = _add_rack(store, "rack-b")
    a_compute = a.components[2]

    spec = component_targets(
        a_compute.info.id,
        ExternalRef(type=ComponentType.powershelf, id="rack-a-ps1"),
        ExternalRef(type=ComponentType.compute, id="rack-b-c2"),
        a_compute.info.id,
    )
    racks = resolve_target_spec(store, spec)

    assert [c.component_id for c in racks[a.id].components] == ["rack-a-ps1", "rack-a-c1"]
    assert [c.component_id for c in racks[b.id].components] == ["rack-b-c2"]
    assert racks[b.id].info.name == "rack-b"
    assert all(c.rack_id == a.id for c in racks[a.id].components)


def test_resolver_errors():
    store = InMemoryInventoryStore()
    _add_rack(store, "rack-a")

    with pytest.raises(ValidationError, match="target spec is nil"):
        resolve_target_spec(store, None)
    with pytest.raises(ValidationError):
        resolve_target_spec(store, TargetSpec())
    with pytest.raises(NotFoundError):
        resolve_target_spec(store, rack_targets("rack-missing"))
    with pytest.raises(NotFoundError):
        resolve_target_spec(store, component_targets(uuid.uuid4()))


def test_component_target_without_any_key_is_a_validation_error():
    with pytest.raises(ValidationError, match="either uuid or external"):
        _fetch_component(InMemoryInventoryStore(), ComponentTarget())
