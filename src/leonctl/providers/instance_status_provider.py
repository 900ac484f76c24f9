"""Derive an instance's lifecycle state from live probes."""
from __future__ import annotations

import os
from collections.abc import Callable
from dataclasses import dataclass

from ..models import Instance, InstanceState
from .health import HealthProbe


@dataclass(frozen=True)
class InstanceStatus:
    """Represents the observed status of a Leon instance."""

    state: InstanceState
    detail: str = ""


def pid_alive(pid: int) -> bool:
    """Return True when a process with *pid* exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True


class InstanceStatusProvider:
    """Compute status at query time; nothing here is written to the registry."""

    def __init__(
        self,
        health: HealthProbe,
        *,
        is_alive: Callable[[int], bool] = pid_alive,
    ) -> None:
        """Use *health* for single endpoint probes and *is_alive* for pid checks."""
        self.health = health
        self._is_alive = is_alive

    def status(self, instance: Instance) -> InstanceStatus:
        """Return the status for *instance*."""
        if not instance.path.exists():
            return InstanceStatus(
                state=InstanceState.ABSENT,
                detail=f"{instance.path} does not exist.",
            )

        url = self.health.url_for(instance)
        if self.health.probe_once(url):
            return InstanceStatus(state=InstanceState.RUNNING, detail=f"{url} is answering.")

        if instance.pid is not None and self._is_alive(instance.pid):
            return InstanceStatus(
                state=InstanceState.STARTING,
                detail=f"Process {instance.pid} is alive but {url} is not answering yet.",
            )
        return InstanceStatus(state=InstanceState.STOPPED, detail=f"{url} is not answering.")


__all__ = ["InstanceStatus", "InstanceStatusProvider", "pid_alive"]
