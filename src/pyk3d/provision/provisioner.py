"""Resource provisioner — thin primitives over the runtime client.

Creates and deletes the per-cluster network and image volume, and creates,
starts, stops and removes node containers.  Every resource is tagged with
the ``app``/``cluster`` labels; node containers additionally carry
``component``.  Creating primitives accept an optional
:class:`RollbackStack` and register their undo before doing anything that
can fail afterwards.
"""

from __future__ import annotations

import logging
from datetime import datetime

from pyk3d.models import (
    APP_NAME,
    LABEL_API_HOST,
    LABEL_APP,
    LABEL_CLUSTER,
    LABEL_COMPONENT,
    LABEL_CREATED,
    ClusterSpec,
    Node,
    PortBinding,
    Role,
)
from pyk3d.naming import container_name, image_volume_name, network_name
from pyk3d.orchestrator.rollback import RollbackStack
from pyk3d.runtime.client import ContainerSpec, RuntimeClient

logger = logging.getLogger(__name__)

IMAGE_VOLUME_MOUNT = "/images"
RESTART_POLICY = "unless-stopped"


def cluster_labels(cluster: str) -> dict[str, str]:
    return {LABEL_APP: APP_NAME, LABEL_CLUSTER: cluster}


def node_labels(cluster: str, role: Role) -> dict[str, str]:
    labels = cluster_labels(cluster)
    labels[LABEL_COMPONENT] = role.value
    labels[LABEL_CREATED] = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    return labels


def server_url_env(spec: ClusterSpec) -> str:
    server = container_name(spec.name, Role.SERVER)
    return f"K3S_URL=https://{server}:{spec.api_port.port}"


class Provisioner:
    """Creates and removes the runtime resources of one cluster."""

    def __init__(self, runtime: RuntimeClient) -> None:
        self._runtime = runtime

    # --- Network & volume ---

    def create_network(self, cluster: str, rollback: RollbackStack | None = None) -> str:
        name = network_name(cluster)
        network_id = self._runtime.network_create(name, cluster_labels(cluster))
        if rollback is not None:
            rollback.push(f"network {name}", lambda: self._runtime.network_remove(name))
        logger.info("Created cluster network %s (%s)", name, network_id)
        return network_id

    def delete_network(self, cluster: str) -> None:
        self._runtime.network_remove(network_name(cluster))

    def network_exists(self, cluster: str) -> bool:
        return self._runtime.network_exists(network_name(cluster))

    def create_image_volume(
        self, cluster: str, rollback: RollbackStack | None = None,
    ) -> str:
        """Create the volume shared by all nodes; return its mount string."""
        name = self._runtime.volume_create(image_volume_name(cluster), cluster_labels(cluster))
        if rollback is not None:
            rollback.push(f"volume {name}", lambda: self._runtime.volume_remove(name))
        logger.info("Created image volume %s", name)
        return f"{name}:{IMAGE_VOLUME_MOUNT}"

    def delete_image_volume(self, cluster: str) -> None:
        self._runtime.volume_remove(image_volume_name(cluster))

    # --- Nodes ---

    def create_server(self, spec: ClusterSpec, rollback: RollbackStack | None = None) -> Node:
        """Create and start the server container of *spec*."""
        name = container_name(spec.name, Role.SERVER)
        labels = node_labels(spec.name, Role.SERVER)
        if spec.api_port.host:
            labels[LABEL_API_HOST] = spec.api_port.host

        api_binding = PortBinding(
            host_ip=spec.api_port.host_ip,
            host_port=spec.api_port.port,
            container_port=spec.api_port.port,
        )
        container = ContainerSpec(
            name=name,
            image=spec.image,
            command=["server", *spec.server_args],
            env=list(spec.env),
            labels=labels,
            ports=[api_binding, *spec.ports_for(name)],
            volumes=list(spec.volumes),
            network=network_name(spec.name),
            hostname=name,
            restart_policy=RESTART_POLICY if spec.auto_restart else None,
            verbose=spec.verbose,
        )
        return self._create_and_start(container, spec.name, Role.SERVER, rollback)

    def create_worker(
        self,
        spec: ClusterSpec,
        ordinal: int,
        rollback: RollbackStack | None = None,
    ) -> Node:
        """Create and start worker *ordinal*, joined to the cluster's server."""
        name = container_name(spec.name, Role.WORKER, ordinal)
        env = list(spec.env)
        if not any(var.split("=", 1)[0] == "K3S_URL" for var in env):
            env.append(server_url_env(spec))

        container = ContainerSpec(
            name=name,
            image=spec.image,
            command=["agent", *spec.agent_args],
            env=env,
            labels=node_labels(spec.name, Role.WORKER),
            ports=spec.ports_for(name),
            volumes=list(spec.volumes),
            network=network_name(spec.name),
            hostname=name,
            restart_policy=RESTART_POLICY if spec.auto_restart else None,
            verbose=spec.verbose,
        )
        return self._create_and_start(container, spec.name, Role.WORKER, rollback)

    def start_node(self, node: Node) -> None:
        self._runtime.container_start(node.id)

    def stop_node(self, node: Node) -> None:
        self._runtime.container_stop(node.id)

    def remove_node(self, node: Node) -> None:
        self._runtime.container_remove(node.id)

    # --- Private ---

    def _create_and_start(
        self,
        container: ContainerSpec,
        cluster: str,
        role: Role,
        rollback: RollbackStack | None,
    ) -> Node:
        container_id = self._runtime.container_create(container)
        if rollback is not None:
            rollback.push(
                f"container {container.name}",
                lambda: self._runtime.container_remove(container_id),
            )
        self._runtime.container_start(container_id)
        logger.info("Created %s %s (%s)", role.value, container.name, container_id[:12])
        return Node(
            id=container_id,
            name=container.name,
            role=role,
            cluster=cluster,
            image=container.image,
            status="running",
        )
