"""Image importer — loads local images into the nodes of a running cluster.

Every image is exported from the local runtime as a ``docker save``
tarball and copied into the image volume through the server container.
Nodes created with the cluster mount that volume at ``/images`` and see
the tarball directly; nodes without the mount (added later with
``add-node``) get their own copy under ``/tmp``.  Each running node then
runs ``ctr image import`` on every tarball.  Tarballs are removed
afterwards unless asked to keep them.
"""

from __future__ import annotations

import io
import logging
import posixpath
import re
import tarfile
from collections.abc import Callable, Iterable
from datetime import datetime

from pyk3d.errors import ClusterError, ProvisionError, ValidationError
from pyk3d.naming import image_volume_name
from pyk3d.provision.provisioner import IMAGE_VOLUME_MOUNT
from pyk3d.registry.discovery import ClusterRegistry
from pyk3d.runtime.client import ContainerSummary, RuntimeClient

logger = logging.getLogger(__name__)

FALLBACK_DIR = "/tmp"

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9_.-]")


def split_image_args(args: Iterable[str]) -> list[str]:
    """Flatten ``a,b c`` style arguments into image references, in order."""
    images: list[str] = []
    for arg in args:
        images.extend(part.strip() for part in arg.split(",") if part.strip())
    return images


def tarball_name(cluster: str, image: str, stamp: str) -> str:
    """Tarball file name for *image*, e.g. ``k3d-demo-images-<stamp>-nginx_1.25.tar``."""
    return f"{image_volume_name(cluster)}-{stamp}-{_UNSAFE_CHARS_RE.sub('_', image)}.tar"


def pack_file(filename: str, content: bytes) -> bytes:
    """Wrap *content* in a tar archive holding the single file *filename*."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        info = tarfile.TarInfo(filename)
        info.size = len(content)
        info.mode = 0o644
        tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def _node_name(node: ContainerSummary) -> str:
    return node.name.lstrip("/")


class ImageImporter:
    """Imports local images into every running node of one cluster."""

    def __init__(
        self,
        runtime: RuntimeClient,
        registry: ClusterRegistry | None = None,
        _clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._runtime = runtime
        self._registry = registry or ClusterRegistry(runtime)
        self._clock = _clock or datetime.now

    def import_images(
        self,
        cluster: str,
        images: Iterable[str],
        keep_tarball: bool = False,
    ) -> list[str]:
        """Import *images* into the running nodes of *cluster*.

        Returns the names of the nodes the images were imported into,
        server first.  Stopped workers are skipped.

        Raises:
            ValidationError: If no image is given.
            NotFoundError: If the cluster has no running server or an image
                does not exist locally.
            ProvisionError: If copying or importing failed on a node.
        """
        refs = split_image_args(images)
        if not refs:
            raise ValidationError("No images given to import")

        server = self._registry.running_server(cluster)
        workers = [w for w in self._registry.workers(cluster) if w.status == "running"]
        nodes = [server, *workers]

        stamp = self._clock().strftime("%Y%m%d%H%M%S")
        archives: dict[str, bytes] = {}
        for ref in refs:
            logger.info("Saving image %s", ref)
            archives[tarball_name(cluster, ref, stamp)] = self._runtime.image_save(ref)

        placed: list[tuple[ContainerSummary, list[str]]] = []
        try:
            shared: list[str] = []
            placed.append((server, shared))
            self._copy(server, IMAGE_VOLUME_MOUNT, archives, shared)

            for node in nodes:
                paths = shared
                if node is not server and not self._has_file(node, shared[0]):
                    logger.debug("Node %s has no image volume, copying tarballs", _node_name(node))
                    paths = []
                    placed.append((node, paths))
                    self._copy(node, FALLBACK_DIR, archives, paths)
                for path in paths:
                    self._import(node, path)
        finally:
            if keep_tarball:
                for node, paths in placed:
                    if paths:
                        logger.info("Keeping %s on node %s", ", ".join(paths), _node_name(node))
            else:
                self._remove([(node, paths) for node, paths in placed if paths])

        names = [_node_name(node) for node in nodes]
        logger.info("Imported %d image(s) into %s", len(refs), ", ".join(names))
        return names

    # --- Private ---

    def _copy(
        self,
        node: ContainerSummary,
        directory: str,
        archives: dict[str, bytes],
        paths: list[str],
    ) -> None:
        """Copy every archive into *directory* of *node*, recording each path."""
        for filename, content in archives.items():
            self._runtime.container_put_archive(node.id, directory, pack_file(filename, content))
            paths.append(posixpath.join(directory, filename))

    def _has_file(self, node: ContainerSummary, path: str) -> bool:
        code, _output = self._runtime.container_exec(node.id, ["test", "-f", path])
        return code == 0

    def _import(self, node: ContainerSummary, path: str) -> None:
        logger.info("Importing %s into node %s", posixpath.basename(path), _node_name(node))
        code, output = self._runtime.container_exec(node.id, ["ctr", "image", "import", path])
        if code != 0:
            raise ProvisionError(
                f"Couldn't import {path} into node {_node_name(node)}: {output.strip()}"
            )

    def _remove(self, placed: list[tuple[ContainerSummary, list[str]]]) -> None:
        for node, paths in placed:
            try:
                code, output = self._runtime.container_exec(node.id, ["rm", "-f", *paths])
            except ClusterError as e:
                logger.warning("Couldn't remove tarballs from node %s: %s", _node_name(node), e)
                continue
            if code != 0:
                logger.warning(
                    "Couldn't remove tarballs from node %s: %s", _node_name(node), output.strip(),
                )
