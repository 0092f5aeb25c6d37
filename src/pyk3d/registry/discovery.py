"""Cluster registry — rebuilds clusters from runtime container labels.

There is no metadata store: the ``app``, ``cluster`` and ``component``
labels on node containers are the only durable record of cluster
membership.  Every query goes back to the runtime; nothing is cached.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pyk3d.errors import ConsistencyError, NotFoundError
from pyk3d.models import (
    APP_NAME,
    LABEL_APP,
    LABEL_CLUSTER,
    LABEL_COMPONENT,
    Cluster,
    Node,
    Role,
)
from pyk3d.runtime.client import ContainerSummary, RuntimeClient

logger = logging.getLogger(__name__)


def _to_node(summary: ContainerSummary, role: Role) -> Node:
    return Node(
        id=summary.id,
        name=summary.name.lstrip("/"),
        role=role,
        cluster=summary.labels.get(LABEL_CLUSTER, ""),
        image=summary.image,
        status=summary.status,
    )


def _worker_sort_key(node: Node) -> tuple[int, int, str]:
    ordinal = node.ordinal
    if ordinal is None:
        return (1, 0, node.name)
    return (0, ordinal, node.name)


def group_clusters(summaries: Iterable[ContainerSummary]) -> list[Cluster]:
    """Group labelled containers into clusters, sorted by cluster name.

    Raises:
        ConsistencyError: If one cluster has more than one server.
    """
    servers: dict[str, Node] = {}
    workers: dict[str, list[Node]] = {}
    names: set[str] = set()

    for summary in summaries:
        cluster = summary.labels.get(LABEL_CLUSTER)
        if not cluster:
            continue
        component = summary.labels.get(LABEL_COMPONENT)
        if component == Role.SERVER:
            node = _to_node(summary, Role.SERVER)
            if cluster in servers:
                raise ConsistencyError(
                    f"Cluster {cluster} has more than one server container: "
                    f"{servers[cluster].name}, {node.name}"
                )
            servers[cluster] = node
        elif component == Role.WORKER:
            workers.setdefault(cluster, []).append(_to_node(summary, Role.WORKER))
        else:
            logger.debug("Ignoring container %s with component %r", summary.name, component)
            continue
        names.add(cluster)

    return [
        Cluster(
            name=name,
            server=servers.get(name),
            workers=sorted(workers.get(name, []), key=_worker_sort_key),
        )
        for name in sorted(names)
    ]


class ClusterRegistry:
    """Discovery queries over the runtime's labelled containers."""

    def __init__(self, runtime: RuntimeClient) -> None:
        self._runtime = runtime

    def discover(self, all_clusters: bool = False, name: str | None = None) -> list[Cluster]:
        """Return the clusters that currently exist.

        Filters on ``cluster=<name>`` unless *all_clusters* is set or
        *name* is empty.  Stopped containers are included.  An unknown
        name yields an empty list.
        """
        labels = {LABEL_APP: APP_NAME}
        if not all_clusters and name:
            labels[LABEL_CLUSTER] = name
        return group_clusters(self._runtime.container_list(labels, all=True))

    def get(self, name: str) -> Cluster | None:
        """Look up one cluster by name. Returns None if it doesn't exist."""
        clusters = self.discover(False, name)
        return clusters[0] if clusters else None

    def exists(self, name: str) -> bool:
        return self.get(name) is not None

    def running_server(self, name: str) -> ContainerSummary:
        """Return the running server container of cluster *name*.

        Raises:
            NotFoundError: If the cluster has no running server.
            ConsistencyError: If it has more than one.
        """
        labels = {
            LABEL_APP: APP_NAME,
            LABEL_CLUSTER: name,
            LABEL_COMPONENT: Role.SERVER.value,
        }
        servers = self._runtime.container_list(labels, all=False)
        if not servers:
            raise NotFoundError(f"Couldn't find a running server container for cluster {name}")
        if len(servers) > 1:
            raise ConsistencyError(f"Cluster {name} has more than one running server container")
        return servers[0]

    def workers(self, name: str) -> list[ContainerSummary]:
        """All worker containers of cluster *name*, stopped ones included."""
        labels = {
            LABEL_APP: APP_NAME,
            LABEL_CLUSTER: name,
            LABEL_COMPONENT: Role.WORKER.value,
        }
        return self._runtime.container_list(labels, all=True)
