"""Cluster lifecycle orchestrator.

Sequences the provisioner, port allocator, readiness watcher, registry and
join deriver into the five cluster operations: create, delete, start, stop
and add-node.  Image import and kubeconfig retrieval are delegated to
their own helpers.

Cluster state is never stored; every operation starts from a fresh
registry query:

    absent --create--> running --stop--> stopped --start--> running
    running/stopped --add-node--> (unchanged)
    any non-absent --delete--> absent

Failure policy:
  - create rolls back everything it created (compensating actions, LIFO)
  - delete/stop/start log worker failures and continue; server failures
    are fatal for the cluster
  - add-node has no rollback: nodes created before a failure remain
  - import-images removes its tarballs even when an import fails
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable, Iterable
from functools import partial
from pathlib import Path

from pyk3d.config import generate_cluster_secret
from pyk3d.errors import ClusterError, ConflictError, NotFoundError, ProvisionError, ValidationError
from pyk3d.hosts import HostResolver, NullHostResolver, apply_host_fallback
from pyk3d.images.importer import ImageImporter
from pyk3d.join.deriver import SECRET_ENV_VAR, derive_join_config, next_worker_ordinals
from pyk3d.kubeconfig import ClusterDirectory, KubeconfigFetcher
from pyk3d.models import Cluster, ClusterSpec, CreateOptions, Node, NodePorts, Role
from pyk3d.naming import (
    check_cluster_name,
    container_name,
    node_names,
    parse_api_port,
    qualify_image,
)
from pyk3d.orchestrator.rollback import RollbackStack
from pyk3d.orchestrator.tasks import NodeTask, NodeTaskPool
from pyk3d.ports.allocator import allocate_ports
from pyk3d.provision.provisioner import Provisioner
from pyk3d.readiness.watcher import READY_MARKER, ReadinessWatcher
from pyk3d.registry.discovery import ClusterRegistry
from pyk3d.runtime.client import RuntimeClient

logger = logging.getLogger(__name__)

KUBECONFIG_OUTPUT_ENV = "K3S_KUBECONFIG_OUTPUT=/output/kubeconfig.yaml"

ROLE_ALIASES: dict[str, Role] = {
    "server": Role.SERVER,
    "master": Role.SERVER,
    "worker": Role.WORKER,
    "agent": Role.WORKER,
}


def normalize_role(role: str | Role) -> Role:
    try:
        return ROLE_ALIASES[str(role).lower()]
    except KeyError:
        raise ValidationError(
            f"Unknown node role [{role}], expected one of: {', '.join(ROLE_ALIASES)}"
        ) from None


def build_cluster_spec(
    options: CreateOptions,
    secret: str,
    host_resolver: HostResolver | None = None,
    resolve: Callable[[str], str] = socket.gethostbyname,
) -> ClusterSpec:
    """Turn user-level create options into the spec every node is built from.

    Raises:
        ValidationError: If the cluster name is not a valid hostname.
        ParseError: If the API port or a port spec is malformed.
        ConflictError: If port bindings collide on a node.
    """
    check_cluster_name(options.name)

    api_port = parse_api_port(options.api_port, resolve)
    api_port = apply_host_fallback(api_port, host_resolver or NullHostResolver())

    server_args = ["--https-listen-port", str(api_port.port)]
    if api_port.host:
        logger.info("Add TLS SAN for %s", api_port.host)
        server_args += ["--tls-san", api_port.host]
    server_args += options.server_args

    env = [KUBECONFIG_OUTPUT_ENV, *options.env, f"{SECRET_ENV_VAR}={secret}"]

    node_ports = allocate_ports(
        options.ports,
        node_names(options.name, options.workers),
        options.port_auto_offset,
    )
    server = container_name(options.name, Role.SERVER)
    for binding in node_ports.get(server, []):
        if binding.host_port == api_port.port and binding.protocol == "tcp":
            raise ConflictError(
                f"Host port {api_port.port}/tcp on node {server} is already "
                "used by the API server"
            )

    return ClusterSpec(
        name=options.name,
        image=qualify_image(options.image),
        env=tuple(env),
        server_args=tuple(server_args),
        agent_args=tuple(options.agent_args),
        node_ports=tuple(
            NodePorts(node=node, bindings=tuple(bindings))
            for node, bindings in node_ports.items()
        ),
        port_auto_offset=options.port_auto_offset,
        volumes=tuple(options.volumes),
        auto_restart=options.auto_restart,
        verbose=options.verbose,
        api_port=api_port,
    )


class ClusterOrchestrator:
    """Creates, deletes, starts, stops and grows clusters on a runtime.

    Usage::

        orchestrator = ClusterOrchestrator(DockerRuntime())
        orchestrator.create(CreateOptions(name="demo", workers=2))
        orchestrator.add_node("demo", "worker", count=1)
        orchestrator.delete(name="demo")
    """

    def __init__(
        self,
        runtime: RuntimeClient,
        directory: ClusterDirectory | None = None,
        host_resolver: HostResolver | None = None,
        secret_factory: Callable[[], str] = generate_cluster_secret,
        node_workers: int = 1,
        watcher: ReadinessWatcher | None = None,
    ) -> None:
        self._runtime = runtime
        self._directory = directory or ClusterDirectory()
        self._host_resolver = host_resolver or NullHostResolver()
        self._secret_factory = secret_factory
        self._registry = ClusterRegistry(runtime)
        self._provisioner = Provisioner(runtime)
        self._watcher = watcher or ReadinessWatcher(runtime)
        self._pool = NodeTaskPool(node_workers)

    @property
    def registry(self) -> ClusterRegistry:
        return self._registry

    # --- Queries ---

    def check_runtime(self) -> str:
        """Ping the runtime and return its API version."""
        return self._runtime.ping()

    def list_clusters(self) -> list[Cluster]:
        return self._registry.discover(all_clusters=True)

    def get_kubeconfig(self, name: str) -> Path:
        fetcher = KubeconfigFetcher(self._runtime, self._directory, self._registry)
        return fetcher.fetch(name)

    # --- Images ---

    def import_images(
        self,
        name: str,
        images: Iterable[str],
        keep_tarball: bool = False,
    ) -> list[str]:
        """Import local *images* into every running node of cluster *name*.

        Returns the names of the nodes that received the images.
        """
        importer = ImageImporter(self._runtime, self._registry)
        return importer.import_images(name, images, keep_tarball)

    # --- Create ---

    def create(self, options: CreateOptions) -> Cluster:
        """Create a cluster: network, image volume, server, then workers.

        On any failure after the first side effect, everything created so
        far is removed again before the error propagates.

        Raises:
            ValidationError: Bad or duplicate name, bad options (no side effects).
            ProvisionError: A runtime call failed (rolled back).
            WaitTimeoutError: The server did not become ready (rolled back).
        """
        check_cluster_name(options.name)
        if self._registry.exists(options.name):
            raise ValidationError(f"Cluster {options.name} already exists")

        spec = build_cluster_spec(options, self._secret_factory(), self._host_resolver)

        logger.info("Creating cluster [%s]", spec.name)
        rollback = RollbackStack()
        try:
            self._provisioner.create_network(spec.name, rollback)
            mount = self._provisioner.create_image_volume(spec.name, rollback)
            spec = spec.model_copy(update={"volumes": (*spec.volumes, mount)})

            server = self._provisioner.create_server(spec, rollback)
            if options.wait is not None:
                logger.info("Waiting for server %s to come up", server.name)
                self._watcher.wait_for_marker(server.id, READY_MARKER, options.wait)

            workers: list[Node] = []
            if options.workers > 0:
                logger.info("Booting %d workers for cluster %s", options.workers, spec.name)
                workers = self._pool.run([
                    NodeTask(
                        name=container_name(spec.name, Role.WORKER, i),
                        run=partial(self._provisioner.create_worker, spec, i, rollback),
                    )
                    for i in range(options.workers)
                ])

            self._directory.create(spec.name)
        except Exception:
            logger.error("Cluster creation failed, rolling back...")
            failed = rollback.unwind()
            if failed:
                logger.error(
                    "Failed to roll back %s for cluster %s", ", ".join(failed), spec.name,
                )
            raise

        rollback.clear()
        logger.info("Created cluster [%s]", spec.name)
        return self._registry.get(spec.name) or Cluster(
            name=spec.name, server=server, workers=workers,
        )

    # --- Delete ---

    def delete(self, all_clusters: bool = False, name: str | None = None) -> list[str]:
        """Remove every container, the network and the volume of the selected clusters.

        Selects every cluster when *all_clusters* is set, otherwise the one
        called *name*.  Returns the names of the clusters that were removed.
        Unknown names are not an error.  An empty *name* does not select
        every cluster: the caller must opt in with *all_clusters*.

        Raises:
            ValidationError: If neither *all_clusters* nor *name* is given.
            ProvisionError: If a server container could not be removed.
        """
        self._require_target(all_clusters, name)
        removed: list[str] = []
        for cluster in self._registry.discover(all_clusters, name):
            logger.info("Removing cluster [%s]", cluster.name)
            if cluster.workers:
                logger.info("...Removing %d workers", len(cluster.workers))
            for worker in cluster.workers:
                try:
                    self._provisioner.remove_node(worker)
                except ClusterError as e:
                    logger.warning("Couldn't remove worker %s: %s", worker.name, e)

            self._directory.delete(cluster.name)

            if cluster.server is not None:
                logger.info("...Removing server")
                try:
                    self._provisioner.remove_node(cluster.server)
                except ClusterError as e:
                    raise ProvisionError(
                        f"Couldn't remove server for cluster {cluster.name}: {e}"
                    ) from e
            else:
                logger.warning("Cluster %s has no server container", cluster.name)

            logger.info("...Removing cluster network")
            try:
                self._provisioner.delete_network(cluster.name)
            except ClusterError as e:
                logger.warning("Couldn't delete cluster network for cluster %s: %s", cluster.name, e)

            logger.info("...Removing image volume")
            try:
                self._provisioner.delete_image_volume(cluster.name)
            except ClusterError as e:
                logger.warning("Couldn't delete image volume for cluster %s: %s", cluster.name, e)

            logger.info("Removed cluster [%s]", cluster.name)
            removed.append(cluster.name)
        return removed

    # --- Stop / Start ---

    def stop(self, all_clusters: bool = False, name: str | None = None) -> list[str]:
        """Stop workers, then the server, of the selected clusters.

        Clusters are selected as in :meth:`delete`.

        Raises:
            ValidationError: If neither *all_clusters* nor *name* is given.
            ProvisionError: If a server container could not be stopped.
        """
        self._require_target(all_clusters, name)
        stopped: list[str] = []
        for cluster in self._registry.discover(all_clusters, name):
            logger.info("Stopping cluster [%s]", cluster.name)
            if cluster.workers:
                logger.info("...Stopping %d workers", len(cluster.workers))
            for worker in cluster.workers:
                try:
                    self._provisioner.stop_node(worker)
                except ClusterError as e:
                    logger.warning("Couldn't stop worker %s: %s", worker.name, e)

            if cluster.server is not None:
                logger.info("...Stopping server")
                try:
                    self._provisioner.stop_node(cluster.server)
                except ClusterError as e:
                    raise ProvisionError(
                        f"Couldn't stop server for cluster {cluster.name}: {e}"
                    ) from e

            logger.info("Stopped cluster [%s]", cluster.name)
            stopped.append(cluster.name)
        return stopped

    def start(self, all_clusters: bool = False, name: str | None = None) -> list[str]:
        """Start the server, then the workers, of the selected clusters.

        Clusters are selected as in :meth:`delete`.

        Raises:
            ValidationError: If neither *all_clusters* nor *name* is given.
            ProvisionError: If a server container could not be started.
        """
        self._require_target(all_clusters, name)
        started: list[str] = []
        for cluster in self._registry.discover(all_clusters, name):
            logger.info("Starting cluster [%s]", cluster.name)
            if cluster.server is not None:
                logger.info("...Starting server")
                try:
                    self._provisioner.start_node(cluster.server)
                except ClusterError as e:
                    raise ProvisionError(
                        f"Couldn't start server for cluster {cluster.name}: {e}"
                    ) from e

            if cluster.workers:
                logger.info("...Starting %d workers", len(cluster.workers))
            for worker in cluster.workers:
                try:
                    self._provisioner.start_node(worker)
                except ClusterError as e:
                    logger.warning("Couldn't start worker %s: %s", worker.name, e)

            logger.info("Started cluster [%s]", cluster.name)
            started.append(cluster.name)
        return started

    # --- Add node ---

    def add_node(
        self,
        cluster_name: str,
        role: str | Role = Role.WORKER,
        count: int = 1,
        image: str | None = None,
    ) -> list[Node]:
        """Join *count* new nodes to a running cluster.

        The join secret and API port are read back from the live server
        container.  New worker ordinals continue after the highest
        existing one.  Nodes created before a failure are kept.

        Raises:
            ValidationError: Unsupported role or invalid count.
            NotFoundError: No running server, missing join config or network.
            WorkerSuffixError: An existing worker name has no numeric suffix.
            ProvisionError: A runtime call failed.
        """
        node_role = normalize_role(role)
        if node_role == Role.SERVER:
            raise ValidationError("Adding server nodes is not supported")
        if count < 1:
            raise ValidationError(f"Node count must be >= 1, got {count}")

        server = self._registry.running_server(cluster_name)
        try:
            info = self._runtime.container_inspect(server.id)
        except NotFoundError as e:
            raise NotFoundError(
                f"Couldn't inspect server container [{server.id}] to get cluster secret: {e}"
            ) from e
        join = derive_join_config(info)

        if not self._provisioner.network_exists(cluster_name):
            raise NotFoundError(f"Couldn't find network for cluster {cluster_name}")

        ordinals = next_worker_ordinals(
            [w.name for w in self._registry.workers(cluster_name)], count,
        )
        spec = ClusterSpec(
            name=cluster_name,
            image=qualify_image(image) if image else info.image,
            env=tuple(join.env),
        )

        logger.info("Adding %d worker nodes to cluster %s", count, cluster_name)
        nodes = self._pool.run([
            NodeTask(
                name=container_name(cluster_name, Role.WORKER, ordinal),
                run=partial(self._provisioner.create_worker, spec, ordinal),
            )
            for ordinal in ordinals
        ])
        for node in nodes:
            logger.info("Created worker node %s (%s)", node.name, node.id[:12])
        return nodes

    # --- Private ---

    def _require_target(self, all_clusters: bool, name: str | None) -> None:
        if not all_clusters and not name:
            raise ValidationError("No cluster name given (use --all to select every cluster)")
