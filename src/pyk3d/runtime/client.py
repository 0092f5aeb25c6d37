"""Runtime client protocol and the value types it exchanges.

The RuntimeClient protocol defines the container-runtime capabilities the
orchestrator consumes.  Any object with these methods satisfies the
protocol — no inheritance required.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from pyk3d.models import PortBinding


@dataclass
class ContainerSpec:
    """Everything needed to create one node container.

    With ``verbose`` set, pulling a missing image reports its progress.
    """

    name: str
    image: str
    command: list[str] = field(default_factory=list)
    env: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    ports: list[PortBinding] = field(default_factory=list)
    volumes: list[str] = field(default_factory=list)
    network: str | None = None
    hostname: str | None = None
    privileged: bool = True
    tmpfs: dict[str, str] = field(
        default_factory=lambda: {"/run": "", "/var/run": ""},
    )
    restart_policy: str | None = None
    verbose: bool = False


@dataclass
class ContainerSummary:
    """A row of a container listing."""

    id: str
    name: str
    image: str = ""
    status: str = ""
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class ContainerInfo:
    """Configured state of a single container, as returned by inspect."""

    id: str
    name: str
    image: str = ""
    status: str = ""
    env: list[str] = field(default_factory=list)
    cmd: list[str] = field(default_factory=list)
    labels: dict[str, str] = field(default_factory=dict)
    ports: dict[str, list[tuple[str, int]]] = field(default_factory=dict)


class LogStream(Protocol):
    """An iterable of raw log chunks that can be closed early."""

    def __iter__(self) -> Iterator[bytes]: ...

    def close(self) -> None: ...


@runtime_checkable
class RuntimeClient(Protocol):
    """Protocol for container runtime backends."""

    def ping(self) -> str:
        """Check the runtime responds; return its API version."""
        ...

    def network_create(self, name: str, labels: dict[str, str]) -> str: ...

    def network_remove(self, name: str) -> None: ...

    def network_exists(self, name: str) -> bool: ...

    def volume_create(self, name: str, labels: dict[str, str]) -> str: ...

    def volume_remove(self, name: str) -> None: ...

    def container_create(self, spec: ContainerSpec) -> str:
        """Create (but do not start) a container; return its ID."""
        ...

    def container_start(self, container_id: str) -> None: ...

    def container_stop(self, container_id: str) -> None: ...

    def container_remove(self, container_id: str) -> None:
        """Force-remove a container together with its anonymous volumes."""
        ...

    def container_inspect(self, container_id: str) -> ContainerInfo: ...

    def container_list(
        self, labels: dict[str, str], all: bool = False,
    ) -> list[ContainerSummary]:
        """List containers carrying every label in *labels*."""
        ...

    def container_logs(self, container_id: str, since: float) -> LogStream:
        """Follow combined stdout/stderr starting at unix time *since*."""
        ...

    def container_archive(self, container_id: str, path: str) -> bytes:
        """Return a tar archive of *path* inside the container."""
        ...

    def container_put_archive(self, container_id: str, path: str, data: bytes) -> None:
        """Unpack the tar archive *data* into directory *path* of the container."""
        ...

    def container_exec(self, container_id: str, command: list[str]) -> tuple[int, str]:
        """Run *command* inside a running container; return exit code and output."""
        ...

    def image_save(self, image: str) -> bytes:
        """Export a local image as a ``docker save`` tarball."""
        ...
