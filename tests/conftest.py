"""Shared fixtures: an in-memory container runtime and orchestrators on top of it.

FakeRuntime keeps networks, volumes and containers in dicts and implements
the RuntimeClient protocol.  Failures are injected per operation and
resource name with ``runtime.fail("container_start", "demo-worker-1")``.
Files live per container, except under a named volume mount, where every
container mounting that volume shares them.  ``exec`` understands the few
commands the library runs: ``test -f``, ``rm -f`` and ``ctr image import``.
"""

from __future__ import annotations

import io
import itertools
import posixpath
import tarfile
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from pyk3d.errors import NotFoundError, ProvisionError
from pyk3d.hosts import NullHostResolver
from pyk3d.kubeconfig import ClusterDirectory
from pyk3d.orchestrator.orchestrator import ClusterOrchestrator
from pyk3d.runtime.client import ContainerInfo, ContainerSpec, ContainerSummary

TEST_SECRET = "s3cr3tS3CR3Ts3cr3tS3"
DEFAULT_LOGS = [b"Starting k3s v1.29\n", b"level=info msg=\"Running kubelet\"\n"]


@dataclass
class FakeContainer:
    id: str
    spec: ContainerSpec
    status: str = "created"

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass
class FakeLogStream:
    chunks: list[bytes]
    closed: bool = False

    def __iter__(self) -> Iterator[bytes]:
        return iter(self.chunks)

    def close(self) -> None:
        self.closed = True


class BlockingLogStream:
    """A log stream that stays silent until it is closed."""

    def __init__(self) -> None:
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def __iter__(self) -> Iterator[bytes]:
        self._closed.wait(timeout=30)
        return iter(())

    def close(self) -> None:
        self._closed.set()


@dataclass
class FakeRuntime:
    """In-memory RuntimeClient."""

    networks: dict[str, dict[str, str]] = field(default_factory=dict)
    volumes: dict[str, dict[str, str]] = field(default_factory=dict)
    containers: dict[str, FakeContainer] = field(default_factory=dict)
    logs: dict[str, list[bytes]] = field(default_factory=dict)
    files: dict[tuple[str, str], bytes] = field(default_factory=dict)
    calls: list[tuple[str, str]] = field(default_factory=list)
    streams: list[FakeLogStream | BlockingLogStream] = field(default_factory=list)
    silent: set[str] = field(default_factory=set)
    images: dict[str, bytes] = field(default_factory=dict)
    imported: dict[str, list[str]] = field(default_factory=dict)
    exec_results: dict[tuple[str, str], tuple[int, str]] = field(default_factory=dict)
    _failures: set[tuple[str, str]] = field(default_factory=set)
    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1))
    _lock: threading.Lock = field(default_factory=threading.Lock)

    # --- Test helpers ---

    def fail(self, op: str, name: str) -> None:
        self._failures.add((op, name))

    def by_name(self, name: str) -> FakeContainer:
        for container in self.containers.values():
            if container.name == name:
                return container
        raise KeyError(name)

    def names(self) -> list[str]:
        return sorted(c.name for c in self.containers.values())

    def file_key(self, container: FakeContainer, path: str) -> tuple[str, str]:
        """Where *path* of *container* is stored: its own files or a shared volume."""
        for volume in container.spec.volumes:
            source, _, target = volume.partition(":")
            if not source.startswith("/") and (path == target or path.startswith(target + "/")):
                return f"volume:{source}", path
        return container.name, path

    def _check(self, op: str, name: str) -> None:
        self.calls.append((op, name))
        if (op, name) in self._failures:
            raise ProvisionError(f"injected failure: {op} {name}")

    def _get(self, container_id: str) -> FakeContainer:
        try:
            return self.containers[container_id]
        except KeyError:
            raise NotFoundError(f"No such container: {container_id}") from None

    # --- RuntimeClient ---

    def ping(self) -> str:
        return "1.43"

    def network_create(self, name: str, labels: dict[str, str]) -> str:
        self._check("network_create", name)
        if name in self.networks:
            raise ProvisionError(f"network {name} already exists")
        self.networks[name] = dict(labels)
        return f"net-{name}"

    def network_remove(self, name: str) -> None:
        self._check("network_remove", name)
        if name not in self.networks:
            raise NotFoundError(f"network {name} not found")
        del self.networks[name]

    def network_exists(self, name: str) -> bool:
        return name in self.networks

    def volume_create(self, name: str, labels: dict[str, str]) -> str:
        self._check("volume_create", name)
        self.volumes[name] = dict(labels)
        return name

    def volume_remove(self, name: str) -> None:
        self._check("volume_remove", name)
        if name not in self.volumes:
            raise NotFoundError(f"volume {name} not found")
        del self.volumes[name]

    def container_create(self, spec: ContainerSpec) -> str:
        self._check("container_create", spec.name)
        with self._lock:
            if any(c.name == spec.name for c in self.containers.values()):
                raise ProvisionError(f"container name {spec.name} is already in use")
            container_id = f"{next(self._ids):012x}{'0' * 52}"
            self.containers[container_id] = FakeContainer(container_id, spec)
        return container_id

    def container_start(self, container_id: str) -> None:
        container = self._get(container_id)
        self._check("container_start", container.name)
        container.status = "running"

    def container_stop(self, container_id: str) -> None:
        container = self._get(container_id)
        self._check("container_stop", container.name)
        container.status = "exited"

    def container_remove(self, container_id: str) -> None:
        container = self._get(container_id)
        self._check("container_remove", container.name)
        del self.containers[container_id]

    def container_inspect(self, container_id: str) -> ContainerInfo:
        container = self._get(container_id)
        return ContainerInfo(
            id=container.id,
            name=container.name,
            image=container.spec.image,
            status=container.status,
            env=list(container.spec.env),
            cmd=list(container.spec.command),
            labels=dict(container.spec.labels),
        )

    def container_list(
        self, labels: dict[str, str], all: bool = False,
    ) -> list[ContainerSummary]:
        return [
            ContainerSummary(
                id=c.id,
                name=c.name,
                image=c.spec.image,
                status=c.status,
                labels=dict(c.spec.labels),
            )
            for c in self.containers.values()
            if labels.items() <= c.spec.labels.items()
            and (all or c.status == "running")
        ]

    def container_logs(
        self, container_id: str, since: float,
    ) -> FakeLogStream | BlockingLogStream:
        container = self._get(container_id)
        stream: FakeLogStream | BlockingLogStream
        if container.name in self.silent:
            stream = BlockingLogStream()
        else:
            stream = FakeLogStream(list(self.logs.get(container.name, DEFAULT_LOGS)))
        self.streams.append(stream)
        return stream

    def container_archive(self, container_id: str, path: str) -> bytes:
        container = self._get(container_id)
        try:
            content = self.files[self.file_key(container, path)]
        except KeyError:
            raise NotFoundError(f"Could not find the file {path} in container") from None
        return make_tar(posixpath.basename(path), content)

    def container_put_archive(self, container_id: str, path: str, data: bytes) -> None:
        container = self._get(container_id)
        self._check("container_put_archive", container.name)
        with tarfile.open(fileobj=io.BytesIO(data)) as tar:
            for member in tar.getmembers():
                extracted = tar.extractfile(member)
                if extracted is not None:
                    key = self.file_key(container, posixpath.join(path, member.name))
                    self.files[key] = extracted.read()

    def container_exec(self, container_id: str, command: list[str]) -> tuple[int, str]:
        container = self._get(container_id)
        self._check("container_exec", container.name)
        if container.status != "running":
            raise ProvisionError(f"container {container.name} is not running")
        forced = self.exec_results.get((container.name, command[0]))
        if forced is not None:
            return forced

        if command[:2] == ["test", "-f"]:
            return (0, "") if self.file_key(container, command[2]) in self.files else (1, "")
        if command[:2] == ["rm", "-f"]:
            for path in command[2:]:
                self.files.pop(self.file_key(container, path), None)
            return 0, ""
        if command[:3] == ["ctr", "image", "import"]:
            path = command[3]
            if self.file_key(container, path) not in self.files:
                return 1, f"ctr: open {path}: no such file or directory"
            self.imported.setdefault(container.name, []).append(path)
            return 0, f"unpacking {path}...done"
        return 127, f"{command[0]}: not found"

    def image_save(self, image: str) -> bytes:
        self._check("image_save", image)
        try:
            return self.images[image]
        except KeyError:
            raise NotFoundError(f"No such image: {image}") from None


def make_tar(filename: str, content: bytes) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(filename)
        info.size = len(content)
        tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


@pytest.fixture()
def runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def cluster_dir(tmp_path: Path) -> ClusterDirectory:
    return ClusterDirectory(tmp_path / "clusters")


@pytest.fixture()
def orchestrator(runtime: FakeRuntime, cluster_dir: ClusterDirectory) -> ClusterOrchestrator:
    return ClusterOrchestrator(
        runtime,
        directory=cluster_dir,
        host_resolver=NullHostResolver(),
        secret_factory=lambda: TEST_SECRET,
    )
