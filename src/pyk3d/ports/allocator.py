"""Port allocator — maps user port specs onto the nodes of a cluster.

A port spec has the form::

    [ip:][host_port:]container_port[/protocol][@selector[@selector...]]

Ports may be ranges (``8080-8081:80-81``) and IPv6 host addresses are
written in brackets (``[::1]:8080:80``).  Specs without a selector apply
to every node.  Selectors are ``all``, ``server``/``master``,
``workers``/``agents``, a node name, or a node name without its cluster
prefix (``worker-1``).

When a spec fans out to several nodes and an auto offset is configured,
each node's host port becomes ``base + offset * index`` where ``index`` is
the node's position in the node list (server first), so broadcasting one
spec never makes two nodes claim the same host port.
"""

from __future__ import annotations

import re

from pyk3d.errors import ConflictError, ParseError
from pyk3d.models import PortBinding, PortProtocol

_WORKER_RE = re.compile(r"-worker-\d+$")

SELECTOR_GROUPS: dict[str, str] = {
    "all": "all",
    "server": "server",
    "master": "server",
    "workers": "workers",
    "agents": "workers",
}


def _is_server(node: str) -> bool:
    return node.endswith("-server")


def _is_worker(node: str) -> bool:
    return _WORKER_RE.search(node) is not None


def _parse_port_range(value: str, spec: str) -> list[int]:
    """Parse ``N`` or ``N-M`` into the list of ports it covers."""
    start_str, sep, end_str = value.partition("-")
    try:
        start = int(start_str)
        end = int(end_str) if sep else start
    except ValueError:
        raise ParseError(f"Invalid port [{value}] in port spec [{spec}]") from None
    if end < start:
        raise ParseError(f"Invalid port range [{value}] in port spec [{spec}]")
    for port in (start, end):
        if not 0 < port <= 65535:
            raise ParseError(f"Port [{port}] out of range in port spec [{spec}]")
    return list(range(start, end + 1))


def _split_address(mapping: str, spec: str) -> tuple[str, str, str]:
    """Split the mapping part into ``(host_ip, host_port, container_port)``."""
    if mapping.startswith("["):
        ip, bracket, rest = mapping[1:].partition("]")
        if not bracket or not rest.startswith(":"):
            raise ParseError(f"Invalid IPv6 address in port spec [{spec}]")
        parts = rest[1:].split(":")
        if len(parts) != 2:
            raise ParseError(f"Invalid port spec [{spec}]: expected [ip]:host:container")
        return ip, parts[0], parts[1]

    parts = mapping.split(":")
    if len(parts) == 1:
        return "", "", parts[0]
    if len(parts) == 2:
        return "", parts[0], parts[1]
    if len(parts) == 3:
        return parts[0], parts[1], parts[2]
    raise ParseError(f"Invalid port spec [{spec}]: too many ':' separators")


def parse_port_spec(spec: str) -> tuple[list[PortBinding], list[str]]:
    """Parse one spec into its bindings (before offsets) and its selectors."""
    mapping, *selectors = spec.split("@")
    if not mapping:
        raise ParseError(f"Invalid port spec [{spec}]: no port given")
    if any(not s for s in selectors):
        raise ParseError(f"Invalid port spec [{spec}]: empty node selector")

    protocol = PortProtocol.TCP
    if "/" in mapping:
        mapping, proto = mapping.rsplit("/", 1)
        try:
            protocol = PortProtocol(proto.lower())
        except ValueError:
            raise ParseError(f"Invalid protocol [{proto}] in port spec [{spec}]") from None

    host_ip, host_part, container_part = _split_address(mapping, spec)
    if not container_part:
        raise ParseError(f"Invalid port spec [{spec}]: no container port")

    container_ports = _parse_port_range(container_part, spec)
    host_ports: list[int | None]
    if host_part:
        host_ports = list(_parse_port_range(host_part, spec))
        if len(host_ports) != len(container_ports):
            raise ParseError(
                f"Invalid port spec [{spec}]: host and container port ranges differ in size"
            )
    else:
        host_ports = [None] * len(container_ports)

    bindings = [
        PortBinding(
            host_ip=host_ip,
            host_port=host_port,
            container_port=container_port,
            protocol=protocol,
        )
        for host_port, container_port in zip(host_ports, container_ports, strict=True)
    ]
    return bindings, selectors


def resolve_selectors(selectors: list[str], node_names: list[str], spec: str) -> list[str]:
    """Resolve node selectors to node names, preserving *node_names* order."""
    if not selectors:
        return list(node_names)

    selected: set[str] = set()
    for selector in selectors:
        group = SELECTOR_GROUPS.get(selector)
        if group == "all":
            matched = list(node_names)
        elif group == "server":
            matched = [n for n in node_names if _is_server(n)]
        elif group == "workers":
            matched = [n for n in node_names if _is_worker(n)]
        else:
            matched = [
                n for n in node_names
                if n == selector or n.endswith(f"-{selector}")
            ]
        if not matched:
            raise ParseError(
                f"Unknown node selector [{selector}] in port spec [{spec}]"
            )
        selected.update(matched)

    return [n for n in node_names if n in selected]


def allocate_ports(
    port_specs: list[str],
    node_names: list[str],
    auto_offset: int = 0,
) -> dict[str, list[PortBinding]]:
    """Build the per-node port binding table.

    Raises:
        ParseError: If a spec is malformed or a selector matches no node.
        ConflictError: If two bindings on one node share host port and
            protocol after offsets are applied.
    """
    if auto_offset < 0:
        raise ParseError(f"Port auto offset must be >= 0, got {auto_offset}")

    index = {name: i for i, name in enumerate(node_names)}
    table: dict[str, list[PortBinding]] = {name: [] for name in node_names}

    for spec in port_specs:
        bindings, selectors = parse_port_spec(spec)
        targets = resolve_selectors(selectors, node_names, spec)
        fan_out = len(targets) > 1

        for node in targets:
            shift = auto_offset * index[node] if fan_out else 0
            for binding in bindings:
                if binding.host_port is not None and shift:
                    port = binding.host_port + shift
                    if port > 65535:
                        raise ParseError(
                            f"Port spec [{spec}] exceeds 65535 on node {node} "
                            f"after applying offset {shift}"
                        )
                    binding = binding.model_copy(update={"host_port": port})
                if binding not in table[node]:
                    table[node].append(binding)

    for node, bindings in table.items():
        _check_conflicts(node, bindings)

    return {node: bindings for node, bindings in table.items() if bindings}


def _check_conflicts(node: str, bindings: list[PortBinding]) -> None:
    seen: dict[tuple[int, PortProtocol], PortBinding] = {}
    for binding in bindings:
        if binding.host_port is None:
            continue
        key = (binding.host_port, binding.protocol)
        if key in seen:
            other = seen[key]
            raise ConflictError(
                f"Host port {binding.host_port}/{binding.protocol.value} on node {node} "
                f"is mapped to both container port {other.container_port} "
                f"and {binding.container_port}"
            )
        seen[key] = binding
