"""Deterministic resource names and input validation for cluster creation."""

from __future__ import annotations

import socket
from collections.abc import Callable

from pyk3d.errors import ParseError, ValidationError
from pyk3d.models import APIPort, Role

DEFAULT_REGISTRY = "docker.io"
DEFAULT_API_PORT = 6443
MAX_NAME_LENGTH = 63


def check_cluster_name(name: str) -> None:
    """Ensure *name* is usable as a hostname label (RFC 1123).

    Cluster names become part of container names and DNS names on the
    cluster network.
    """
    if not name:
        raise ValidationError("Invalid cluster name: no name provided")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(
            f"Invalid cluster name: [{name}] is longer than {MAX_NAME_LENGTH} characters"
        )
    if name.startswith("-") or name.endswith("-"):
        raise ValidationError(
            f"Invalid cluster name: [{name}] must not start or end with - (dash)"
        )
    for char in name:
        if not (char.isascii() and (char.isalnum() or char == "-")):
            raise ValidationError(
                f"Invalid cluster name: [{name}] contains characters "
                "other than 'Aa-Zz', '0-9' or '-'"
            )


def qualify_image(image: str) -> str:
    """Prefix *image* with the default registry when none is given."""
    if len(image.split("/")) <= 2:
        return f"{DEFAULT_REGISTRY}/{image}"
    return image


def container_name(cluster: str, role: Role, ordinal: int | None = None) -> str:
    if role == Role.SERVER:
        return f"{cluster}-server"
    if ordinal is None:
        raise ValueError("worker containers need an ordinal")
    return f"{cluster}-worker-{ordinal}"


def node_names(cluster: str, workers: int) -> list[str]:
    """All node names of a new cluster: server first, then workers by ordinal."""
    return [container_name(cluster, Role.SERVER)] + [
        container_name(cluster, Role.WORKER, i) for i in range(workers)
    ]


def network_name(cluster: str) -> str:
    return f"k3d-{cluster}"


def image_volume_name(cluster: str) -> str:
    return f"k3d-{cluster}-images"


def parse_api_port(
    spec: str,
    resolve: Callable[[str], str] = socket.gethostbyname,
) -> APIPort:
    """Parse ``[host:]port`` into an :class:`APIPort`.

    A given host must resolve to an IP address; the first result is used
    as the host interface the port is published on.
    """
    parts = spec.split(":")
    if len(parts) > 2:
        raise ParseError(f"Invalid API port [{spec}]: expected [host:]port")

    host = ""
    host_ip = ""
    port_str = parts[-1]
    if len(parts) == 2:
        host = parts[0]
        if not host:
            raise ParseError(f"Invalid API port [{spec}]: empty host")
        try:
            host_ip = resolve(host)
        except OSError as e:
            raise ParseError(f"Invalid API port [{spec}]: cannot resolve {host}: {e}") from e

    try:
        port = int(port_str)
    except ValueError:
        raise ParseError(f"Invalid API port [{spec}]: port is not a number") from None
    if not 0 < port <= 65535:
        raise ParseError(f"Invalid API port [{spec}]: port out of range")

    return APIPort(host=host, host_ip=host_ip, port=port)
