"""DockerRuntime — the RuntimeClient backed by the Docker Engine API.

Uses the official ``docker`` Python SDK.  The client is built from the
environment (``DOCKER_HOST``, ``DOCKER_TLS_VERIFY``, ...) unless one is
passed in.  Docker SDK exceptions never leak out of this module: they are
translated to :class:`NotFoundError` and :class:`ProvisionError`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, cast

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from docker.models.containers import Container

from pyk3d.errors import NotFoundError, ProvisionError
from pyk3d.runtime.client import (
    ContainerInfo,
    ContainerSpec,
    ContainerSummary,
    LogStream,
)

logger = logging.getLogger(__name__)


@contextmanager
def _docker_errors(what: str) -> Iterator[None]:
    """Translate Docker SDK exceptions raised while doing *what*."""
    try:
        yield
    except NotFound as e:
        raise NotFoundError(f"{what}: {e.explanation or e}") from e
    except DockerException as e:
        raise ProvisionError(f"{what}: {e}") from e


def _port_bindings(spec: ContainerSpec) -> dict[str, list[tuple[str, int | None]]]:
    """Group a node's bindings by container port in docker-py's format."""
    result: dict[str, list[tuple[str, int | None]]] = {}
    for binding in spec.ports:
        result.setdefault(binding.container_key, []).append(
            (binding.host_ip, binding.host_port),
        )
    return result


def _published_ports(raw: dict[str, Any] | None) -> dict[str, list[tuple[str, int]]]:
    ports: dict[str, list[tuple[str, int]]] = {}
    for key, bindings in (raw or {}).items():
        ports[key] = [
            (b.get("HostIp", ""), int(b["HostPort"]))
            for b in bindings or []
            if b.get("HostPort")
        ]
    return ports


class DockerRuntime:
    """RuntimeClient implementation talking to a Docker daemon."""

    def __init__(self, client: docker.DockerClient | None = None) -> None:
        if client is None:
            with _docker_errors("Couldn't create docker client"):
                client = docker.from_env()
        self._client = client

    # --- Daemon ---

    def ping(self) -> str:
        with _docker_errors("Checking docker failed"):
            self._client.ping()
            return str(self._client.version().get("ApiVersion", "unknown"))

    # --- Networks ---

    def network_create(self, name: str, labels: dict[str, str]) -> str:
        with _docker_errors(f"Couldn't create network {name}"):
            network = self._client.networks.create(name, driver="bridge", labels=labels)
        logger.debug("Created network %s (%s)", name, network.id)
        return str(network.id)

    def network_remove(self, name: str) -> None:
        with _docker_errors(f"Couldn't remove network {name}"):
            self._client.networks.get(name).remove()

    def network_exists(self, name: str) -> bool:
        try:
            with _docker_errors(f"Couldn't look up network {name}"):
                self._client.networks.get(name)
        except NotFoundError:
            return False
        return True

    # --- Volumes ---

    def volume_create(self, name: str, labels: dict[str, str]) -> str:
        with _docker_errors(f"Couldn't create volume {name}"):
            volume = self._client.volumes.create(name=name, labels=labels)
        return str(volume.name)

    def volume_remove(self, name: str) -> None:
        with _docker_errors(f"Couldn't remove volume {name}"):
            self._client.volumes.get(name).remove(force=True)

    # --- Containers ---

    def container_create(self, spec: ContainerSpec) -> str:
        kwargs: dict[str, Any] = {
            "command": spec.command,
            "name": spec.name,
            "hostname": spec.hostname or spec.name,
            "environment": spec.env,
            "labels": spec.labels,
            "ports": _port_bindings(spec),
            "volumes": spec.volumes,
            "privileged": spec.privileged,
            "tmpfs": spec.tmpfs,
            "detach": True,
        }
        if spec.network:
            kwargs["network"] = spec.network
        if spec.restart_policy:
            kwargs["restart_policy"] = {"Name": spec.restart_policy}

        with _docker_errors(f"Couldn't create container {spec.name}"):
            try:
                container = self._client.containers.create(spec.image, **kwargs)
            except ImageNotFound:
                self._pull(spec.image, spec.verbose)
                container = self._client.containers.create(spec.image, **kwargs)
        return str(container.id)

    def container_start(self, container_id: str) -> None:
        with _docker_errors(f"Couldn't start container {container_id}"):
            self._get(container_id).start()

    def container_stop(self, container_id: str) -> None:
        with _docker_errors(f"Couldn't stop container {container_id}"):
            self._get(container_id).stop()

    def container_remove(self, container_id: str) -> None:
        with _docker_errors(f"Couldn't remove container {container_id}"):
            self._get(container_id).remove(force=True, v=True)

    def container_inspect(self, container_id: str) -> ContainerInfo:
        with _docker_errors(f"Couldn't inspect container {container_id}"):
            container = self._get(container_id)
            attrs = container.attrs
        config = attrs.get("Config") or {}
        return ContainerInfo(
            id=str(container.id),
            name=str(container.name),
            image=config.get("Image", ""),
            status=str(container.status),
            env=list(config.get("Env") or []),
            cmd=list(config.get("Cmd") or []),
            labels=dict(container.labels),
            ports=_published_ports((attrs.get("NetworkSettings") or {}).get("Ports")),
        )

    def container_list(
        self, labels: dict[str, str], all: bool = False,
    ) -> list[ContainerSummary]:
        label_filter = [f"{key}={value}" for key, value in labels.items()]
        with _docker_errors("Couldn't list containers"):
            containers = cast(
                list[Container],
                self._client.containers.list(all=all, filters={"label": label_filter}),
            )
        return [
            ContainerSummary(
                id=str(c.id),
                name=str(c.name),
                image=(c.attrs.get("Config") or {}).get("Image", ""),
                status=str(c.status),
                labels=dict(c.labels),
            )
            for c in containers
        ]

    def container_logs(self, container_id: str, since: float) -> LogStream:
        with _docker_errors(f"Couldn't read logs of container {container_id}"):
            return cast(
                LogStream,
                self._get(container_id).logs(
                    stream=True, follow=True, stdout=True, stderr=True, since=int(since),
                ),
            )

    def container_archive(self, container_id: str, path: str) -> bytes:
        with _docker_errors(f"Couldn't copy {path} from container {container_id}"):
            chunks, _stat = self._get(container_id).get_archive(path)
            return b"".join(chunks)

    def container_put_archive(self, container_id: str, path: str, data: bytes) -> None:
        with _docker_errors(f"Couldn't copy archive to {path} in container {container_id}"):
            copied = self._get(container_id).put_archive(path, data)
        if not copied:
            raise ProvisionError(f"Couldn't copy archive to {path} in container {container_id}")

    def container_exec(self, container_id: str, command: list[str]) -> tuple[int, str]:
        with _docker_errors(f"Couldn't exec {command[0]} in container {container_id}"):
            result = self._get(container_id).exec_run(command, stdout=True, stderr=True)
        output = result.output or b""
        return int(result.exit_code or 0), output.decode("utf-8", errors="replace")

    # --- Images ---

    def image_save(self, image: str) -> bytes:
        with _docker_errors(f"Couldn't save image {image}"):
            return b"".join(self._client.images.get(image).save(named=True))

    # --- Private: helpers ---

    def _pull(self, image: str, verbose: bool) -> None:
        logger.info("Pulling image %s", image)
        if not verbose:
            self._client.images.pull(image)
            return
        for event in self._client.api.pull(image, stream=True, decode=True):
            if "error" in event:
                raise ProvisionError(f"Couldn't pull image {image}: {event['error']}")
            status = event.get("status", "")
            progress = event.get("progress", "")
            logger.info("%s %s %s", event.get("id", image), status, progress)

    def _get(self, container_id: str) -> Container:
        return cast(Container, self._client.containers.get(container_id))
