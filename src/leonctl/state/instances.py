"""Registry of Leon instances keyed by name."""
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from ..errors import InstanceExistsError, InstanceNotFoundError
from ..models import Instance

LOGGER = logging.getLogger(__name__)

INSTANCES_KEY = "instances"


class KeyValueStore(Protocol):
    """Persistence backend consulted by :class:`InstanceRegistry`."""

    def get(self, key: str, default: object | None = None) -> object | None:
        """Return the stored value for *key*."""

    def set(self, key: str, value: object) -> None:
        """Durably store *value* under *key*."""


class InstanceRegistry:
    """Ordered collection of :class:`Instance` records with unique names.

    The store is read before every operation and written synchronously after
    every mutation; nothing is cached between calls.
    """

    def __init__(self, store: KeyValueStore) -> None:
        """Bind the registry to *store*."""
        self._store = store

    def list(self) -> list[Instance]:
        """Return every valid instance record in registration order."""
        instances: list[Instance] = []
        for entry in self._load_entries():
            try:
                instances.append(Instance.from_dict(entry))
            except (TypeError, ValueError) as exc:
                LOGGER.debug("Skipping malformed registry entry %r: %s", entry, exc)
        return instances

    def find_by_name(self, name: str) -> Instance | None:
        """Return the instance called *name*, if registered."""
        for instance in self.list():
            if instance.name == name:
                return instance
        return None

    def get(self, name: str) -> Instance:
        """Return the instance called *name* or raise ``InstanceNotFoundError``."""
        instance = self.find_by_name(name)
        if instance is None:
            raise InstanceNotFoundError(f"Instance '{name}' does not exist.")
        return instance

    def add(self, instance: Instance) -> None:
        """Register *instance*; names must be unique."""
        entries = self._load_entries()
        if any(entry.get("name") == instance.name for entry in entries):
            raise InstanceExistsError(
                f"{instance.name} already exists, please provide another instance name."
            )
        entries.append(instance.to_dict())
        self._store.set(INSTANCES_KEY, entries)
        LOGGER.debug("Registered instance %s at %s", instance.name, instance.path)

    def update(self, name: str, **changes: Any) -> Instance:
        """Apply *changes* to the instance called *name* and return the result."""
        entries = self._load_entries()
        for index, entry in enumerate(entries):
            if entry.get("name") != name:
                continue
            updated = Instance.from_dict(entry).with_changes(**changes)
            entries[index] = updated.to_dict()
            self._store.set(INSTANCES_KEY, entries)
            return updated
        raise InstanceNotFoundError(f"Instance '{name}' does not exist.")

    def remove(self, name: str) -> Instance:
        """Unregister the instance called *name* and return its last record."""
        entries = self._load_entries()
        remaining = [entry for entry in entries if entry.get("name") != name]
        if len(remaining) == len(entries):
            raise InstanceNotFoundError(f"Instance '{name}' does not exist.")
        removed = next(entry for entry in entries if entry.get("name") == name)
        self._store.set(INSTANCES_KEY, remaining)
        LOGGER.debug("Removed instance %s from registry", name)
        return Instance.from_dict(removed)

    def _load_entries(self) -> list[dict[str, object]]:
        raw = self._store.get(INSTANCES_KEY, [])
        if not isinstance(raw, list):
            return []
        return [dict(entry) for entry in raw if isinstance(entry, Mapping)]


__all__ = ["INSTANCES_KEY", "InstanceRegistry", "KeyValueStore"]
