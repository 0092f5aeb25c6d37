"""API host resolution strategies.

When ``--api-port`` names no host, a fallback strategy may supply one (for
example the IP of a docker-machine VM).  The strategy is pluggable and can
be disabled with :class:`NullHostResolver`.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from typing import Protocol, runtime_checkable

from pyk3d.models import APIPort

logger = logging.getLogger(__name__)

DOCKER_MACHINE_ENV = "DOCKER_MACHINE_NAME"


class HostResolverError(Exception):
    """Raised when a host resolver strategy cannot produce an address."""


@runtime_checkable
class HostResolver(Protocol):
    """Protocol for API host fallback strategies."""

    def resolve(self) -> str:
        """Return a host address, or ``""`` when the strategy does not apply."""
        ...


class NullHostResolver:
    """Never supplies a host."""

    def resolve(self) -> str:
        return ""


class DockerMachineHostResolver:
    """Resolve the IP of the docker-machine named by ``DOCKER_MACHINE_NAME``."""

    def __init__(
        self,
        machine: str | None = None,
        docker_machine_path: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._machine = machine
        self._path = docker_machine_path
        self._timeout = timeout

    def resolve(self) -> str:
        machine = self._machine or os.environ.get(DOCKER_MACHINE_ENV, "")
        if not machine:
            return ""

        path = self._path or shutil.which("docker-machine")
        if path is None:
            raise HostResolverError("docker-machine executable not found in PATH")

        try:
            result = subprocess.run(
                [path, "ip", machine],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise HostResolverError(
                f"docker-machine ip {machine} failed: {e.stderr.strip()}"
            ) from e
        except (subprocess.TimeoutExpired, OSError) as e:
            raise HostResolverError(f"docker-machine ip {machine} failed: {e}") from e
        return result.stdout.strip()


def apply_host_fallback(api_port: APIPort, resolver: HostResolver) -> APIPort:
    """Fill in host and host IP from *resolver* when *api_port* has none.

    Resolver failures are warnings: the API port is returned unchanged.
    """
    if api_port.host:
        return api_port
    try:
        host = resolver.resolve()
    except HostResolverError as e:
        logger.warning(
            "Failed to get docker machine IP address, ignoring the %s "
            "environment variable setting: %s",
            DOCKER_MACHINE_ENV,
            e,
        )
        return api_port
    if not host:
        return api_port
    return api_port.model_copy(update={"host": host, "host_ip": host})
