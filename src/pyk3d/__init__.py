"""pyk3d: run throwaway k3s clusters as Docker containers."""

__version__ = "0.4.0"

from pyk3d.config import Pyk3dConfig, find_config, generate_cluster_secret, load_config
from pyk3d.errors import (
    ClusterError,
    ConflictError,
    ConsistencyError,
    NotFoundError,
    ParseError,
    ProvisionError,
    StreamError,
    ValidationError,
    WaitTimeoutError,
    WorkerSuffixError,
)
from pyk3d.hosts import DockerMachineHostResolver, HostResolver, NullHostResolver
from pyk3d.images.importer import ImageImporter
from pyk3d.kubeconfig import ClusterDirectory, KubeconfigFetcher
from pyk3d.models import (
    APIPort,
    Cluster,
    ClusterSpec,
    CreateOptions,
    JoinConfig,
    Node,
    NodePorts,
    PortBinding,
    Role,
)
from pyk3d.orchestrator.orchestrator import ClusterOrchestrator, build_cluster_spec
from pyk3d.registry.discovery import ClusterRegistry
from pyk3d.runtime import DockerRuntime, RuntimeClient

__all__ = [
    "APIPort",
    "Cluster",
    "ClusterDirectory",
    "ClusterError",
    "ClusterOrchestrator",
    "ClusterRegistry",
    "ClusterSpec",
    "ConflictError",
    "ConsistencyError",
    "CreateOptions",
    "DockerMachineHostResolver",
    "DockerRuntime",
    "HostResolver",
    "ImageImporter",
    "JoinConfig",
    "KubeconfigFetcher",
    "Node",
    "NodePorts",
    "NotFoundError",
    "NullHostResolver",
    "ParseError",
    "PortBinding",
    "ProvisionError",
    "Pyk3dConfig",
    "Role",
    "RuntimeClient",
    "StreamError",
    "ValidationError",
    "WaitTimeoutError",
    "WorkerSuffixError",
    "build_cluster_spec",
    "find_config",
    "generate_cluster_secret",
    "load_config",
    "__version__",
]
