"""Native execution strategy: Leon runs straight from its source tree."""
from __future__ import annotations

from ..models import Instance, InstanceMode
from .base import ModeProvider


class NativeProvider(ModeProvider):
    """Install dependencies with npm and start Leon with ``npm start``."""

    mode = InstanceMode.NATIVE

    def configure(self, instance: Instance) -> None:
        """Run ``npm install`` inside the instance tree."""
        self._run_command(
            [self.commands.npm_bin, "install"],
            cwd=instance.path,
            error_prefix=f"Configuring instance '{instance.name}'",
        )

    def start_command(self, instance: Instance) -> list[str]:
        """Return ``npm start``."""
        return [self.commands.npm_bin, "start"]


__all__ = ["NativeProvider"]
