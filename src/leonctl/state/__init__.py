"""State persistence helpers."""
from __future__ import annotations

from .instances import InstanceRegistry, KeyValueStore
from .registry import StateRegistry, StateRegistryError

__all__ = ["InstanceRegistry", "KeyValueStore", "StateRegistry", "StateRegistryError"]
