"""
Inventory plugin interfaces.

Goal
Provide pluggable inventory loading so the engine is source agnostic.

Inventory is normalized into InMemoryInventoryStore and Rack objects.

We keep the interface narrow so it is easy to mock in tests.
"""

from __future__ import annotations

from typing import Protocol

from rack_orchestrator.inventory.store import InMemoryInventoryStore


class InventoryPlugin(Protocol):
    """
    Inventory plugin interface.

    load returns a fully populated InMemoryInventoryStore.
    """

    def load(self) -> InMemoryInventoryStore:
        """Load inventory into an InMemoryInventoryStore."""
