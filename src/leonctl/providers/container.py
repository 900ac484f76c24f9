"""Containerized execution strategy delegating to Leon's docker scripts."""
from __future__ import annotations

import shutil

from ..errors import ConfigureError
from ..models import Instance, InstanceMode
from .base import ModeProvider


class ContainerProvider(ModeProvider):
    """Build the Leon image and run it through the project's npm scripts."""

    mode = InstanceMode.CONTAINERIZED

    def configure(self, instance: Instance) -> None:
        """Build the container image from the instance tree."""
        if shutil.which(self.commands.docker_bin) is None:
            raise ConfigureError(
                f"Configuring instance '{instance.name}' failed.",
                detail=f"'{self.commands.docker_bin}' was not found on PATH.",
            )
        self._run_command(
            [self.commands.npm_bin, "run", "docker:build"],
            cwd=instance.path,
            error_prefix=f"Building the container image for '{instance.name}'",
        )

    def start_command(self, instance: Instance) -> list[str]:
        """Return ``npm run docker:run``."""
        return [self.commands.npm_bin, "run", "docker:run"]


__all__ = ["ContainerProvider"]
