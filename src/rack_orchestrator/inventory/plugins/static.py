"""
Static inventory plugin.

Reads a local json file that contains a list of racks.
This is useful for dev, tests, and small demos.

Schema example
{
  "racks": [
    {
      "info": {"id": "6f1c...", "name": "rack-a1", "model": "gb200-nvl72"},
      "location": {"datacenter": "dc1", "room": "hall2"},
      "components": [
        {
          "type": "powershelf",
          "info": {"id": "1b2e...", "name": "ps-1"},
          "position": {"slot_id": 1},
          "component_id": "ps-ext-1"
        }
      ]
    }
  ]
}

Missing ids are generated, so a fixture only needs to pin the ids it refers to.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from rack_orchestrator.core.serialization import rack_from_dict
from rack_orchestrator.inventory.plugins.base import InventoryPlugin
from rack_orchestrator.inventory.store import InMemoryInventoryStore


@dataclass(frozen=True)
class StaticInventoryPlugin(InventoryPlugin):
    """
    Load inventory from a local json file.

    path points to a json file that matches the schema described in the module docstring.
    """

    path: Path

    def load(self) -> InMemoryInventoryStore:
        data = json.loads(self.path.read_text(encoding="utf-8"))
        racks = data.get("racks", [])

        store = InMemoryInventoryStore()
        if isinstance(racks, list):
            for obj in racks:
                if isinstance(obj, dict):
                    store.add(rack_from_dict(obj))

        return store
