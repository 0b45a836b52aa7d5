"""
Component manager interfaces.

Goal
Hardware actions are delegated to component managers. There is one active
manager per component type, chosen by implementation name, for example a
fleet manager backed implementation for compute and another for power shelves.

The registry holds factories keyed by (component type, implementation name).
activate builds the manager once and caches it, so activities only do a
dictionary lookup per call.

Firmware update windows are set for a batch of machines regardless of their
type, so they go through a separate FirmwareScheduler.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Protocol

from rack_orchestrator.core.errors import NotFoundError
from rack_orchestrator.core.types import ComponentType, Target
from rack_orchestrator.operation.operations import (
    FirmwareControlInfo,
    InjectExpectationInfo,
    PowerControlInfo,
    SetFirmwareUpdateTimeWindowRequest,
)

logger = logging.getLogger(__name__)


class ComponentManager(Protocol):
    """
    Hardware action provider for one component type.

    Every method acts on all ids in the target and raises on the first failure.
    """

    @property
    def component_type(self) -> ComponentType:
        """Component type this manager handles."""

    def power_control(self, target: Target, info: PowerControlInfo) -> None:
        """Apply a power operation."""

    def firmware_control(self, target: Target, info: FirmwareControlInfo) -> None:
        """
        Apply a firmware operation to the target right away.

        No workflow calls this today. FirmwareControl only opens an update window
        through FirmwareScheduler and leaves the update to the fleet manager.
        Managers still implement it so a direct firmware path can be added
        without changing the contract.
        """

    def inject_expectation(self, target: Target, info: InjectExpectationInfo) -> None:
        """Inject expected configuration or state."""


class FirmwareScheduler(Protocol):
    def set_firmware_update_time_window(self, request: SetFirmwareUpdateTimeWindowRequest) -> None:
        """Allow firmware updates for the given machines inside the window."""


ComponentManagerFactory = Callable[[], ComponentManager]


@dataclass
class ComponentManagerRegistry:
    """
    Registry of component manager factories and active managers.

    Thread safe. Activities running in parallel workflows share one registry.
    """

    _factories: Dict[tuple[ComponentType, str], ComponentManagerFactory] = field(default_factory=dict)
    _active: Dict[ComponentType, ComponentManager] = field(default_factory=dict)
    _firmware_scheduler: Optional[FirmwareScheduler] = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def register_factory(
        self,
        component_type: ComponentType,
        implementation: str,
        factory: ComponentManagerFactory,
    ) -> None:
        """Register a factory. A later registration for the same key replaces it."""
        with self._lock:
            self._factories[(component_type, implementation)] = factory

    def activate(self, component_type: ComponentType, implementation: str) -> ComponentManager:
        """Build the manager for a type from the named implementation and make it active."""
        with self._lock:
            factory = self._factories.get((component_type, implementation))
            if factory is None:
                raise NotFoundError(
                    f"no component manager implementation {implementation!r} for {component_type}"
                )
            manager = factory()
            self._active[component_type] = manager

        logger.info("activated %s component manager %r", component_type, implementation)
        return manager

    def activate_all(self, implementations: Mapping[ComponentType, str]) -> None:
        """Activate one implementation per component type."""
        for component_type, implementation in implementations.items():
            self.activate(component_type, implementation)

    def get(self, component_type: ComponentType) -> ComponentManager:
        with self._lock:
            manager = self._active.get(component_type)
        if manager is None:
            raise NotFoundError(f"no active component manager for {component_type}")
        return manager

    def set_firmware_scheduler(self, scheduler: FirmwareScheduler) -> None:
        with self._lock:
            self._firmware_scheduler = scheduler

    def firmware_scheduler(self) -> FirmwareScheduler:
        with self._lock:
            scheduler = self._firmware_scheduler
        if scheduler is None:
            raise NotFoundError("no firmware scheduler configured")
        return scheduler
