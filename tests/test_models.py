"""Tests for instance records."""
from __future__ import annotations

from pathlib import Path

import pytest

from leonctl.models import Instance, InstanceMode


def _instance(**overrides: object) -> Instance:
    values: dict[str, object] = {
        "name": "alpha",
        "path": Path("/srv/leon/alpha"),
        "mode": InstanceMode.NATIVE,
        "birth_date": "2024-01-01T00:00:00Z",
    }
    values.update(overrides)
    return Instance(**values)  # type: ignore[arg-type]


def test_to_dict_omits_unset_runtime_fields() -> None:
    """Port, pid and log file are only written once known."""
    payload = _instance().to_dict()

    assert payload == {
        "name": "alpha",
        "path": "/srv/leon/alpha",
        "mode": "native",
        "birth_date": "2024-01-01T00:00:00Z",
        "start_count": 0,
    }


def test_from_dict_accepts_legacy_mode_names() -> None:
    """Records written with ``classic``/``docker`` modes still load."""
    classic = Instance.from_dict({"name": "a", "path": "/tmp/a", "mode": "classic"})
    docker = Instance.from_dict({"name": "b", "path": "/tmp/b", "mode": "docker"})

    assert classic.mode is InstanceMode.NATIVE
    assert docker.mode is InstanceMode.CONTAINERIZED


def test_from_dict_requires_name_and_path() -> None:
    """Entries missing identifying fields are rejected."""
    with pytest.raises(ValueError):
        Instance.from_dict({"name": "", "path": "/tmp/a"})
    with pytest.raises(ValueError):
        Instance.from_dict({"name": "a"})


def test_with_changes_protects_identity_fields() -> None:
    """Name, path and mode cannot change after creation."""
    instance = _instance()

    updated = instance.with_changes(start_count=3, pid=42)
    assert updated.start_count == 3
    assert updated.pid == 42
    assert instance.start_count == 0

    with pytest.raises(ValueError):
        instance.with_changes(path=Path("/elsewhere"))
    with pytest.raises(ValueError):
        instance.with_changes(mode=InstanceMode.CONTAINERIZED)


def test_round_trip_preserves_runtime_fields() -> None:
    """Runtime bookkeeping survives serialisation."""
    instance = _instance(start_count=2, port=1338, pid=99, log_file=Path("/tmp/alpha.log"))

    assert Instance.from_dict(instance.to_dict()) == instance


def test_external_checkout_flag_persists_and_is_fixed() -> None:
    """The external checkout marker survives serialisation and cannot change."""
    instance = _instance(external_checkout=True)

    assert instance.to_dict()["external_checkout"] is True
    assert Instance.from_dict(instance.to_dict()).external_checkout is True
    with pytest.raises(ValueError):
        instance.with_changes(external_checkout=False)
