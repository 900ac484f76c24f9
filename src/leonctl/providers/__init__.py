"""Provider interfaces for leonctl."""
from __future__ import annotations

from .base import ModeProvider, SpawnedProcess
from .container import ContainerProvider
from .health import HealthProbe, HealthResult
from .instance_status_provider import InstanceStatus, InstanceStatusProvider
from .native import NativeProvider

__all__ = [
    "ContainerProvider",
    "HealthProbe",
    "HealthResult",
    "InstanceStatus",
    "InstanceStatusProvider",
    "ModeProvider",
    "NativeProvider",
    "SpawnedProcess",
]
