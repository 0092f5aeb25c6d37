"""pyk3d CLI — command-line interface for pyk3d.

Commands:
    check-tools     Check that the container runtime is reachable
    create          Create a new cluster
    delete          Delete cluster(s)
    stop            Stop cluster(s)
    start           Start stopped cluster(s)
    list            List all clusters
    get-kubeconfig  Copy a cluster's kubeconfig to the cluster directory
    add-node        Add worker node(s) to a running cluster
    import-images   Import local images into a running cluster
"""

from __future__ import annotations

import logging
import sys
from typing import NoReturn

import click

from pyk3d import __version__
from pyk3d.config import DEFAULT_API_PORT, DEFAULT_IMAGE, Pyk3dConfig, load_config
from pyk3d.errors import ClusterError
from pyk3d.hosts import DockerMachineHostResolver, NullHostResolver
from pyk3d.kubeconfig import ClusterDirectory
from pyk3d.models import Cluster, CreateOptions
from pyk3d.orchestrator.orchestrator import ClusterOrchestrator
from pyk3d.runtime import DockerRuntime

# --- Defaults ---

DEFAULT_CLUSTER_NAME = "k3s-default"


def _resolve_cfg() -> Pyk3dConfig:
    """Load config from pyk3d.yaml (auto-discover, never error)."""
    try:
        return load_config()
    except Exception:
        return Pyk3dConfig()


def _or(explicit: str | None, cfg_val: str | None, fallback: str) -> str:
    """Return first non-None value: explicit CLI flag > config > fallback."""
    return explicit or cfg_val or fallback


def _build_orchestrator(cfg: Pyk3dConfig) -> ClusterOrchestrator:
    host_resolver = (
        DockerMachineHostResolver() if cfg.docker_machine_fallback else NullHostResolver()
    )
    return ClusterOrchestrator(
        DockerRuntime(),
        directory=ClusterDirectory(cfg.cluster_dir),
        host_resolver=host_resolver,
        node_workers=cfg.node_workers,
    )


def _fail(e: Exception) -> NoReturn:
    click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
    sys.exit(1)


def _target(all_clusters: bool, name: str | None) -> str | None:
    return None if all_clusters else name or DEFAULT_CLUSTER_NAME


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", is_flag=True, help="Enable debug logging")
@click.option("--config", "config_path", default=None, help="Path to pyk3d.yaml")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: str | None) -> None:
    """pyk3d: run k3s clusters in Docker."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(levelname)s %(message)s",
    )
    if config_path is None:
        ctx.obj = _resolve_cfg()
        return
    try:
        ctx.obj = load_config(config_path)
    except Exception as e:
        click.echo(f"Error loading config: {e}", err=True)
        sys.exit(1)


# --- check-tools command ---


@cli.command("check-tools")
@click.pass_obj
def check_tools(cfg: Pyk3dConfig) -> None:
    """Check that the container runtime is reachable."""
    try:
        version = _build_orchestrator(cfg).check_runtime()
    except ClusterError as e:
        _fail(e)
    click.echo(click.style("OK", fg="green") + f"  docker API version {version}")


# --- create command ---


@cli.command()
@click.option("--name", "-n", default=DEFAULT_CLUSTER_NAME, help="Name of the cluster")
@click.option("--image", "-i", default=None, help="k3s image for all nodes")
@click.option("--workers", "-w", default=0, type=click.IntRange(min=0), help="Number of workers")
@click.option(
    "--api-port", "-a", default=None,
    help="[host:]port the Kubernetes API server is published on",
)
@click.option(
    "--port", "-p", "ports", multiple=True,
    help="Publish ports: [ip:][host:]container[/proto][@node...]",
)
@click.option(
    "--port-auto-offset", default=0, type=click.IntRange(min=0),
    help="Shift host ports by this much per node when a spec covers several nodes",
)
@click.option("--volume", "-v", "volumes", multiple=True, help="Bind mount a volume")
@click.option("--env", "-e", "env", multiple=True, help="Environment variable KEY=VALUE")
@click.option("--server-arg", "-x", "server_args", multiple=True, help="Extra k3s server argument")
@click.option("--agent-arg", "agent_args", multiple=True, help="Extra k3s agent argument")
@click.option(
    "--wait", "-t", default=None, type=click.IntRange(min=0),
    help="Wait for the server to be ready (seconds, 0 = forever)",
)
@click.option("--auto-restart", is_flag=True, help="Restart nodes with the docker daemon")
@click.pass_context
def create(
    ctx: click.Context,
    name: str,
    image: str | None,
    workers: int,
    api_port: str | None,
    ports: tuple[str, ...],
    port_auto_offset: int,
    volumes: tuple[str, ...],
    env: tuple[str, ...],
    server_args: tuple[str, ...],
    agent_args: tuple[str, ...],
    wait: int | None,
    auto_restart: bool,
) -> None:
    """Create a new cluster."""
    cfg: Pyk3dConfig = ctx.obj
    options = CreateOptions(
        name=name,
        image=_or(image, cfg.image, DEFAULT_IMAGE),
        workers=workers,
        env=list(env),
        server_args=list(server_args),
        agent_args=list(agent_args),
        ports=list(ports),
        port_auto_offset=port_auto_offset,
        volumes=list(volumes),
        api_port=_or(api_port, cfg.api_port, DEFAULT_API_PORT),
        wait=wait if wait is not None else cfg.wait,
        auto_restart=auto_restart,
        verbose=bool(ctx.find_root().params.get("verbose")),
    )
    try:
        cluster = _build_orchestrator(cfg).create(options)
    except ClusterError as e:
        _fail(e)

    click.echo(
        click.style("Created", fg="green", bold=True)
        + f"  cluster {cluster.name} with {len(cluster.workers)} worker(s)"
    )
    click.echo(f"\nRun 'pyk3d get-kubeconfig --name {cluster.name}' to get its kubeconfig.")


# --- delete / stop / start commands ---


@cli.command()
@click.option("--name", "-n", default=None, help="Name of the cluster")
@click.option("--all", "-a", "all_clusters", is_flag=True, help="Delete all existing clusters")
@click.pass_obj
def delete(cfg: Pyk3dConfig, name: str | None, all_clusters: bool) -> None:
    """Delete cluster(s)."""
    try:
        removed = _build_orchestrator(cfg).delete(all_clusters, _target(all_clusters, name))
    except ClusterError as e:
        _fail(e)
    if not removed:
        click.echo("No clusters found.")
        return
    for cluster in removed:
        click.echo(click.style("Deleted", fg="green") + f"  {cluster}")


@cli.command()
@click.option("--name", "-n", default=None, help="Name of the cluster")
@click.option("--all", "-a", "all_clusters", is_flag=True, help="Stop all existing clusters")
@click.pass_obj
def stop(cfg: Pyk3dConfig, name: str | None, all_clusters: bool) -> None:
    """Stop cluster(s)."""
    try:
        stopped = _build_orchestrator(cfg).stop(all_clusters, _target(all_clusters, name))
    except ClusterError as e:
        _fail(e)
    if not stopped:
        click.echo("No clusters found.")
        return
    for cluster in stopped:
        click.echo(click.style("Stopped", fg="yellow") + f"  {cluster}")


@cli.command()
@click.option("--name", "-n", default=None, help="Name of the cluster")
@click.option("--all", "-a", "all_clusters", is_flag=True, help="Start all existing clusters")
@click.pass_obj
def start(cfg: Pyk3dConfig, name: str | None, all_clusters: bool) -> None:
    """Start stopped cluster(s)."""
    try:
        started = _build_orchestrator(cfg).start(all_clusters, _target(all_clusters, name))
    except ClusterError as e:
        _fail(e)
    if not started:
        click.echo("No clusters found.")
        return
    for cluster in started:
        click.echo(click.style("Started", fg="green") + f"  {cluster}")


# --- list command ---


def _status_badge(status: str) -> str:
    color = {"running": "green", "exited": "yellow", "created": "yellow"}.get(status, "red")
    return click.style(f"{status:<10}", fg=color)


def _workers_column(cluster: Cluster) -> str:
    running = sum(1 for w in cluster.workers if w.running)
    return f"{running}/{len(cluster.workers)}"


@cli.command("list")
@click.pass_obj
def list_clusters(cfg: Pyk3dConfig) -> None:
    """List all clusters."""
    try:
        clusters = _build_orchestrator(cfg).list_clusters()
    except ClusterError as e:
        _fail(e)

    if not clusters:
        click.echo("No clusters found.")
        return
    click.echo(f"  {'NAME':<20} {'IMAGE':<35} {'STATUS':<10} WORKERS")
    for cluster in clusters:
        click.echo(
            f"  {cluster.name:<20} {cluster.image:<35} "
            + _status_badge(cluster.status)
            + f" {_workers_column(cluster)}"
        )
    click.echo(f"\n{len(clusters)} cluster(s).")


# --- get-kubeconfig command ---


@cli.command("get-kubeconfig")
@click.option("--name", "-n", default=DEFAULT_CLUSTER_NAME, help="Name of the cluster")
@click.pass_obj
def get_kubeconfig(cfg: Pyk3dConfig, name: str) -> None:
    """Copy a cluster's kubeconfig to the cluster directory and print its path."""
    try:
        path = _build_orchestrator(cfg).get_kubeconfig(name)
    except ClusterError as e:
        _fail(e)
    click.echo(str(path))


# --- add-node command ---


@cli.command("add-node")
@click.option("--name", "-n", default=DEFAULT_CLUSTER_NAME, help="Name of the cluster")
@click.option(
    "--role", "-r", default="worker",
    help="Role of the new node(s): worker/agent (server is not supported)",
)
@click.option("--count", "-c", default=1, type=click.IntRange(min=1), help="Number of nodes")
@click.option("--image", "-i", default=None, help="Image for the new node(s) (default: server's)")
@click.pass_obj
def add_node(
    cfg: Pyk3dConfig,
    name: str,
    role: str,
    count: int,
    image: str | None,
) -> None:
    """Add worker node(s) to a running cluster."""
    try:
        nodes = _build_orchestrator(cfg).add_node(name, role, count, image)
    except ClusterError as e:
        _fail(e)
    for node in nodes:
        click.echo(click.style("Added", fg="green") + f"  {node.name}")


# --- import-images command ---


@cli.command("import-images")
@click.argument("images", nargs=-1, required=True)
@click.option("--name", "-n", default=DEFAULT_CLUSTER_NAME, help="Name of the cluster")
@click.option("--keep-tarball", is_flag=True, help="Keep the image tarballs on the nodes")
@click.pass_obj
def import_images(
    cfg: Pyk3dConfig,
    images: tuple[str, ...],
    name: str,
    keep_tarball: bool,
) -> None:
    """Import local images into a running cluster (IMAGES may be comma-separated)."""
    try:
        nodes = _build_orchestrator(cfg).import_images(name, images, keep_tarball)
    except ClusterError as e:
        _fail(e)
    for node in nodes:
        click.echo(click.style("Imported", fg="green") + f"  {node}")
