"""Instance records persisted in the registry."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any


class InstanceMode(str, Enum):
    """Execution strategy of an instance."""

    NATIVE = "native"
    CONTAINERIZED = "containerized"

    @classmethod
    def parse(cls, value: object) -> InstanceMode:
        """Return the mode for *value*, accepting the legacy names too."""
        text = str(value).strip().lower()
        legacy = {"classic": cls.NATIVE, "docker": cls.CONTAINERIZED}
        if text in legacy:
            return legacy[text]
        return cls(text)


class InstanceState(str, Enum):
    """Lifecycle state derived from live probes, never stored."""

    ABSENT = "absent"
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"


def now_iso() -> str:
    """Return the current UTC time in ISO-8601 form."""
    return datetime.now(tz=UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class Instance:
    """A registered Leon instance.

    ``name``, ``path``, ``mode`` and ``external_checkout`` are fixed at
    creation. ``external_checkout`` marks an instance that runs from a checkout
    leonctl found rather than fetched. The remaining fields are bookkeeping
    written by ``start``.
    """

    name: str
    path: Path
    mode: InstanceMode
    birth_date: str
    start_count: int = 0
    port: int | None = None
    pid: int | None = None
    log_file: Path | None = None
    external_checkout: bool = False

    def with_changes(self, **changes: Any) -> Instance:
        """Return a copy with *changes* applied to the mutable fields."""
        for frozen in ("name", "path", "mode", "external_checkout"):
            if frozen in changes and changes[frozen] != getattr(self, frozen):
                raise ValueError(f"Instance field '{frozen}' cannot be changed.")
        return replace(self, **changes)

    def to_dict(self) -> dict[str, object]:
        """Return the registry representation."""
        payload: dict[str, object] = {
            "name": self.name,
            "path": str(self.path),
            "mode": self.mode.value,
            "birth_date": self.birth_date,
            "start_count": self.start_count,
        }
        if self.port is not None:
            payload["port"] = self.port
        if self.pid is not None:
            payload["pid"] = self.pid
        if self.log_file is not None:
            payload["log_file"] = str(self.log_file)
        if self.external_checkout:
            payload["external_checkout"] = True
        return payload

    @classmethod
    def from_dict(cls, entry: Mapping[str, object]) -> Instance:
        """Build an instance from a registry mapping.

        Raises ``ValueError`` when required fields are missing or malformed.
        """
        name = str(entry.get("name") or "").strip()
        path_raw = entry.get("path")
        if not name or not path_raw:
            raise ValueError("Instance entry requires 'name' and 'path'.")
        port = entry.get("port")
        pid = entry.get("pid")
        log_file = entry.get("log_file")
        return cls(
            name=name,
            path=Path(str(path_raw)),
            mode=InstanceMode.parse(entry.get("mode", InstanceMode.NATIVE.value)),
            birth_date=str(entry.get("birth_date") or ""),
            start_count=int(str(entry.get("start_count") or 0)),
            port=int(str(port)) if port is not None else None,
            pid=int(str(pid)) if pid is not None else None,
            log_file=Path(str(log_file)) if log_file else None,
            external_checkout=entry.get("external_checkout") is True,
        )


__all__ = ["Instance", "InstanceMode", "InstanceState", "now_iso"]
