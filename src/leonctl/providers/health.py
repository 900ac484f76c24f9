"""Bounded readiness polling against an instance's HTTP endpoint."""
from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from ..config import HealthConfig
from ..models import Instance

LOGGER = logging.getLogger(__name__)

Request = Callable[[str, float], int]


@dataclass(frozen=True, slots=True)
class HealthResult:
    """Outcome of a readiness poll."""

    url: str
    healthy: bool
    attempts: int
    elapsed: float


def _http_status(url: str, timeout: float) -> int:
    return httpx.get(url, timeout=timeout).status_code


class HealthProbe:
    """Poll an instance endpoint until it answers or the timeout elapses.

    Transient unavailability is expected while an instance boots, so nothing
    here raises: the caller receives a :class:`HealthResult`.
    """

    def __init__(
        self,
        config: HealthConfig | None = None,
        *,
        request: Request | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Configure endpoint defaults and the injectable request/clock/sleep seams."""
        self.config = config or HealthConfig()
        self._request = request or _http_status
        self._clock = clock
        self._sleep = sleep

    def port_for(self, instance: Instance) -> int:
        """Return the port the instance is expected to listen on."""
        return instance.port or self.config.port

    def url_for(self, instance: Instance) -> str:
        """Return the health URL for *instance*."""
        return f"http://{self.config.host}:{self.port_for(instance)}{self.config.path}"

    def probe_once(self, url: str) -> bool:
        """Return True when *url* answers with a non-server-error status."""
        try:
            status = self._request(url, self.config.request_timeout)
        except httpx.HTTPError as exc:
            LOGGER.debug("Health probe %s not ready: %s", url, exc)
            return False
        return status < 500

    def wait_until_ready(self, url: str, *, timeout: float | None = None) -> HealthResult:
        """Poll *url* every ``interval`` seconds for at most *timeout* seconds."""
        ceiling = self.config.timeout if timeout is None else timeout
        started = self._clock()
        attempts = 0
        while True:
            attempts += 1
            if self.probe_once(url):
                return HealthResult(
                    url=url, healthy=True, attempts=attempts, elapsed=self._clock() - started
                )
            elapsed = self._clock() - started
            if elapsed >= ceiling:
                LOGGER.debug("Health probe %s gave up after %.1fs", url, elapsed)
                return HealthResult(url=url, healthy=False, attempts=attempts, elapsed=elapsed)
            self._sleep(min(self.config.interval, ceiling - elapsed))


__all__ = ["HealthProbe", "HealthResult"]
