"""Instance registry tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from leonctl.errors import InstanceExistsError, InstanceNotFoundError
from leonctl.models import Instance, InstanceMode
from leonctl.state import InstanceRegistry, StateRegistry


def _registry(tmp_path: Path) -> InstanceRegistry:
    return InstanceRegistry(StateRegistry(tmp_path / "registry"))


def _instance(name: str, tmp_path: Path, mode: InstanceMode = InstanceMode.NATIVE) -> Instance:
    return Instance(
        name=name,
        path=tmp_path / name,
        mode=mode,
        birth_date="2024-01-01T00:00:00Z",
    )


def test_empty_registry_lists_nothing(tmp_path: Path) -> None:
    """A fresh registry has no instances."""
    assert _registry(tmp_path).list() == []


def test_add_persists_across_registry_objects(tmp_path: Path) -> None:
    """Records are written to disk, not cached in memory."""
    _registry(tmp_path).add(_instance("alpha", tmp_path))
    _registry(tmp_path).add(_instance("beta", tmp_path, InstanceMode.CONTAINERIZED))

    instances = _registry(tmp_path).list()

    assert [instance.name for instance in instances] == ["alpha", "beta"]
    assert instances[1].mode is InstanceMode.CONTAINERIZED
    assert instances[0].path == tmp_path / "alpha"


def test_duplicate_name_rejected(tmp_path: Path) -> None:
    """Names are unique across the registry."""
    registry = _registry(tmp_path)
    registry.add(_instance("alpha", tmp_path))

    with pytest.raises(InstanceExistsError, match="alpha already exists"):
        registry.add(_instance("alpha", tmp_path))

    assert len(registry.list()) == 1


def test_get_unknown_instance_raises(tmp_path: Path) -> None:
    """Looking up an unregistered name is an error."""
    with pytest.raises(InstanceNotFoundError, match="'ghost' does not exist"):
        _registry(tmp_path).get("ghost")


def test_update_and_remove(tmp_path: Path) -> None:
    """Updates persist and removal returns the last record."""
    registry = _registry(tmp_path)
    registry.add(_instance("alpha", tmp_path))

    updated = registry.update("alpha", pid=1234, port=1338, start_count=1)
    assert registry.get("alpha") == updated
    assert updated.pid == 1234

    removed = registry.remove("alpha")
    assert removed.port == 1338
    assert registry.list() == []

    with pytest.raises(InstanceNotFoundError):
        registry.remove("alpha")
    with pytest.raises(InstanceNotFoundError):
        registry.update("alpha", pid=1)


def test_malformed_entries_are_skipped(tmp_path: Path) -> None:
    """Entries without a name or path are ignored by queries."""
    store = StateRegistry(tmp_path / "registry")
    store.set(
        "instances",
        [
            {"name": "alpha", "path": str(tmp_path / "alpha"), "mode": "native"},
            {"path": "/nowhere"},
            "not-a-mapping",
        ],
    )

    names = [instance.name for instance in InstanceRegistry(store).list()]

    assert names == ["alpha"]
