"""Per-cluster directories and kubeconfig retrieval.

Each cluster gets a directory under ``~/.config/pyk3d/<name>`` holding the
kubeconfig copied out of its server container.  The server writes its
kubeconfig to ``/output/kubeconfig.yaml`` with a loopback address; the
copy is rewritten to point at the host the API port is published on.
"""

from __future__ import annotations

import io
import logging
import shutil
import tarfile
from pathlib import Path
from urllib.parse import urlsplit

import yaml

from pyk3d.errors import NotFoundError
from pyk3d.join.deriver import find_listen_port
from pyk3d.models import LABEL_API_HOST
from pyk3d.registry.discovery import ClusterRegistry
from pyk3d.runtime.client import RuntimeClient

logger = logging.getLogger(__name__)

DEFAULT_CLUSTER_DIR = Path.home() / ".config" / "pyk3d"
KUBECONFIG_OUTPUT = "/output/kubeconfig.yaml"
KUBECONFIG_FILENAME = "kubeconfig.yaml"


class ClusterDirectory:
    """Filesystem bookkeeping for cluster artifacts."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root) if root is not None else DEFAULT_CLUSTER_DIR

    @property
    def root(self) -> Path:
        return self._root

    def path(self, name: str) -> Path:
        return self._root / name

    def create(self, name: str) -> Path:
        path = self.path(name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def delete(self, name: str) -> None:
        """Remove the directory of *name* (missing directories are fine)."""
        shutil.rmtree(self.path(name), ignore_errors=True)

    def kubeconfig_path(self, name: str) -> Path:
        return self.path(name) / KUBECONFIG_FILENAME


def extract_file(archive: bytes, filename: str) -> bytes:
    """Return the contents of *filename* from a tar *archive*."""
    with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
        for member in tar.getmembers():
            if member.isfile() and Path(member.name).name == filename:
                extracted = tar.extractfile(member)
                if extracted is not None:
                    return extracted.read()
    raise NotFoundError(f"{filename} not found in container archive")


def rewrite_server_address(kubeconfig: str, host: str, port: str | None = None) -> str:
    """Point every cluster entry of *kubeconfig* at ``https://host:port``.

    Keeps the original port when *port* is not given, and leaves the port
    out when neither has one.
    """
    data = yaml.safe_load(kubeconfig) or {}
    for entry in data.get("clusters") or []:
        cluster = entry.get("cluster") or {}
        server = cluster.get("server")
        if not server:
            continue
        parts = urlsplit(server)
        netloc = host
        if port or parts.port:
            netloc = f"{host}:{port or parts.port}"
        cluster["server"] = f"{parts.scheme or 'https'}://{netloc}"
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


class KubeconfigFetcher:
    """Copies a cluster's kubeconfig from its server into the cluster directory."""

    def __init__(
        self,
        runtime: RuntimeClient,
        directory: ClusterDirectory,
        registry: ClusterRegistry | None = None,
    ) -> None:
        self._runtime = runtime
        self._directory = directory
        self._registry = registry or ClusterRegistry(runtime)

    def fetch(self, name: str) -> Path:
        """Write the kubeconfig of cluster *name* and return its path.

        Raises:
            NotFoundError: If the cluster has no running server or the
                server has not written its kubeconfig yet.
        """
        server = self._registry.running_server(name)
        info = self._runtime.container_inspect(server.id)

        raw = extract_file(
            self._runtime.container_archive(server.id, KUBECONFIG_OUTPUT),
            KUBECONFIG_FILENAME,
        )
        host = info.labels.get(LABEL_API_HOST) or "localhost"
        content = rewrite_server_address(
            raw.rstrip(b"\x00").decode("utf-8"), host, find_listen_port(info.cmd),
        )

        self._directory.create(name)
        path = self._directory.kubeconfig_path(name)
        path.write_text(content, encoding="utf-8")
        logger.debug("Wrote kubeconfig for cluster %s to %s", name, path)
        return path
