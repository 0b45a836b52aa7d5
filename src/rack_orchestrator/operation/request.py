"""
Operation request.

An OperationRequest is what a caller submits to the task manager.
It carries
operation, a type tag and opaque info
target_spec, which racks or components to act on
description, free text stored on every task

The request only describes targets. Resolution into concrete racks happens in
the task manager, against the inventory store.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import List, Optional

from rack_orchestrator.core.errors import ValidationError
from rack_orchestrator.core.types import ComponentType
from rack_orchestrator.operation.operations import (
    OperationInfo,
    OperationType,
    parse_operation_info,
)


@dataclass(frozen=True)
class OperationWrapper:
    """Operation type plus its opaque JSON info."""

    type: OperationType
    info: str

    @classmethod
    def wrap(cls, info: OperationInfo) -> "OperationWrapper":
        return cls(type=info.operation_type, info=info.to_json())

    def parse(self) -> OperationInfo:
        return parse_operation_info(self.type, self.info)


@dataclass(frozen=True)
class RackIdentifier:
    """A rack is identified by its unique id or by its name."""

    id: Optional[uuid.UUID] = None
    name: str = ""

    def validate(self) -> None:
        if self.id is None and not self.name:
            raise ValidationError("rack target must have either id or name set")
        if self.id is not None and self.name:
            raise ValidationError("rack target must not set both id and name")

    def __str__(self) -> str:
        return str(self.id) if self.id is not None else self.name


@dataclass(frozen=True)
class RackTarget:
    """
    A rack target.

    component_types optionally restricts the rack to components of these types.
    An empty list means all components.
    """

    identifier: RackIdentifier
    component_types: tuple[ComponentType, ...] = ()

    def validate(self) -> None:
        self.identifier.validate()


@dataclass(frozen=True)
class ExternalRef:
    """Reference to a component by the id an external system assigned to it."""

    type: ComponentType
    id: str

    def validate(self) -> None:
        if self.type == ComponentType.unknown:
            raise ValidationError("external component reference must have a known type")
        if not self.id:
            raise ValidationError("external component reference must have an id")


@dataclass(frozen=True)
class ComponentTarget:
    """A component target, by internal id or by external reference."""

    id: Optional[uuid.UUID] = None
    external: Optional[ExternalRef] = None

    def validate(self) -> None:
        if self.id is None and self.external is None:
            raise ValidationError("component target must have either uuid or external set")
        if self.id is not None and self.external is not None:
            raise ValidationError("component target must not set both uuid and external")
        if self.external is not None:
            self.external.validate()


@dataclass(frozen=True)
class TargetSpec:
    """
    Target specification.

    Exactly one of racks or components is populated.
    """

    racks: tuple[RackTarget, ...] = ()
    components: tuple[ComponentTarget, ...] = ()

    def validate(self) -> None:
        if self.racks and self.components:
            raise ValidationError("target_spec must not have both racks and components set")
        if not self.racks and not self.components:
            raise ValidationError("target_spec must have either racks or components set")

        for rt in self.racks:
            rt.validate()
        for ct in self.components:
            ct.validate()


@dataclass(frozen=True)
class OperationRequest:
    operation: OperationWrapper
    target_spec: Optional[TargetSpec]
    description: str = ""

    def validate(self) -> None:
        """
        Validate the whole request.

        Checks, in order
        1) operation type is known
        2) info parses into the type specific struct and that struct validates
        3) target spec is well formed
        """
        if self.operation.type == OperationType.unknown:
            raise ValidationError("operation type is unknown")

        info = self.operation.parse()
        info.validate()

        if self.target_spec is None:
            raise ValidationError("target_spec is required")
        self.target_spec.validate()


def rack_targets(*identifiers: uuid.UUID | str, component_types: List[ComponentType] | None = None) -> TargetSpec:
    """
    Convenience builder for a rack target spec.

    UUIDs are matched by id, strings by name.
    """
    types = tuple(component_types or ())
    racks: list[RackTarget] = []
    for ident in identifiers:
        if isinstance(ident, uuid.UUID):
            rid = RackIdentifier(id=ident)
        else:
            rid = RackIdentifier(name=ident)
        racks.append(RackTarget(identifier=rid, component_types=types))
    return TargetSpec(racks=tuple(racks))


def component_targets(*targets: uuid.UUID | ExternalRef) -> TargetSpec:
    """Convenience builder for a component target spec."""
    comps: list[ComponentTarget] = []
    for tgt in targets:
        if isinstance(tgt, ExternalRef):
            comps.append(ComponentTarget(external=tgt))
        else:
            comps.append(ComponentTarget(id=tgt))
    return TargetSpec(components=tuple(comps))

