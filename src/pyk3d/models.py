"""Core data models for pyk3d.

Defines the schemas for:
- Port bindings and the API port of the server node
- Cluster specifications (what to create)
- Nodes and clusters as discovered from the runtime (what exists)
- Join configuration derived from a live server container
"""

from __future__ import annotations

import enum
import re

from pydantic import BaseModel, ConfigDict, Field

# --- Label schema ---

LABEL_APP = "app"
LABEL_CLUSTER = "cluster"
LABEL_COMPONENT = "component"
LABEL_CREATED = "created"
LABEL_API_HOST = "apihost"
APP_NAME = "k3d"

_WORKER_SUFFIX_RE = re.compile(r"-(\d+)$")


# --- Enums ---


class Role(enum.StrEnum):
    SERVER = "server"
    WORKER = "worker"


class PortProtocol(enum.StrEnum):
    TCP = "tcp"
    UDP = "udp"
    SCTP = "sctp"


# --- Ports ---


class PortBinding(BaseModel):
    """One host-to-container port mapping for a single node.

    ``host_ip`` empty means all interfaces; ``host_port`` ``None`` lets the
    runtime pick an ephemeral host port.
    """

    model_config = ConfigDict(frozen=True)

    host_ip: str = ""
    host_port: int | None = Field(None, ge=0, le=65535)
    container_port: int = Field(..., ge=1, le=65535)
    protocol: PortProtocol = PortProtocol.TCP

    @property
    def container_key(self) -> str:
        """Runtime-style key, e.g. ``80/tcp``."""
        return f"{self.container_port}/{self.protocol.value}"


class APIPort(BaseModel):
    """Where the k3s API server listens and how it is reached from the host."""

    model_config = ConfigDict(frozen=True)

    host: str = ""
    host_ip: str = ""
    port: int = Field(6443, ge=1, le=65535)


# --- Cluster Specification ---


class CreateOptions(BaseModel):
    """User-level parameters of a create request (one per invocation)."""

    name: str
    image: str = "rancher/k3s:latest"
    workers: int = Field(0, ge=0)
    env: list[str] = Field(default_factory=list)
    server_args: list[str] = Field(default_factory=list)
    agent_args: list[str] = Field(default_factory=list)
    ports: list[str] = Field(default_factory=list)
    port_auto_offset: int = Field(0, ge=0)
    volumes: list[str] = Field(default_factory=list)
    api_port: str = "6443"
    wait: int | None = Field(None, ge=0)
    auto_restart: bool = False
    verbose: bool = False


class NodePorts(BaseModel):
    """The port bindings of one node."""

    model_config = ConfigDict(frozen=True)

    node: str
    bindings: tuple[PortBinding, ...] = ()


class ClusterSpec(BaseModel):
    """Immutable description of how the nodes of one cluster are configured.

    Built once per invocation and never mutated afterwards; derive changed
    copies with ``model_copy(update=...)``.  Sequence fields are tuples.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    image: str
    env: tuple[str, ...] = ()
    server_args: tuple[str, ...] = ()
    agent_args: tuple[str, ...] = ()
    node_ports: tuple[NodePorts, ...] = ()
    port_auto_offset: int = Field(0, ge=0)
    volumes: tuple[str, ...] = ()
    auto_restart: bool = False
    verbose: bool = False
    api_port: APIPort = Field(default_factory=APIPort)

    def ports_for(self, node_name: str) -> list[PortBinding]:
        for entry in self.node_ports:
            if entry.node == node_name:
                return list(entry.bindings)
        return []


# --- Discovered View ---


class Node(BaseModel):
    """A realized node container."""

    id: str
    name: str
    role: Role
    cluster: str
    image: str = ""
    status: str = ""

    @property
    def ordinal(self) -> int | None:
        """Trailing numeric suffix of a worker name, ``None`` if absent."""
        match = _WORKER_SUFFIX_RE.search(self.name)
        return int(match.group(1)) if match else None

    @property
    def running(self) -> bool:
        return self.status == "running"


class Cluster(BaseModel):
    """A cluster reconstructed from runtime labels. Never persisted."""

    name: str
    server: Node | None = None
    workers: list[Node] = Field(default_factory=list)

    @property
    def nodes(self) -> list[Node]:
        head = [self.server] if self.server is not None else []
        return head + list(self.workers)

    @property
    def status(self) -> str:
        return self.server.status if self.server is not None else "unknown"

    @property
    def image(self) -> str:
        return self.server.image if self.server is not None else ""


class JoinConfig(BaseModel):
    """Credentials and address an agent needs to join an existing server."""

    secret_env: str
    server_url: str

    @property
    def env(self) -> list[str]:
        return [f"K3S_URL={self.server_url}", self.secret_env]
