"""Container runtime clients.

Backends: DockerRuntime.
"""

from pyk3d.runtime.client import (
    ContainerInfo,
    ContainerSpec,
    ContainerSummary,
    RuntimeClient,
)
from pyk3d.runtime.docker_client import DockerRuntime

__all__ = [
    "ContainerInfo",
    "ContainerSpec",
    "ContainerSummary",
    "DockerRuntime",
    "RuntimeClient",
]
