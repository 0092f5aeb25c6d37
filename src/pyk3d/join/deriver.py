"""Join deriver — recovers join configuration from a live server container.

New agents must authenticate with the secret the server was started with
and reach it on its API port.  Neither is stored anywhere else: both are
read back from the server container's configured environment and command.
Agents reach the server by its container name on the cluster network.

New worker ordinals continue after the highest existing one, so a gap left
by a deleted worker is never reused.
"""

from __future__ import annotations

from collections.abc import Iterable

from pyk3d.errors import NotFoundError, WorkerSuffixError
from pyk3d.models import JoinConfig
from pyk3d.runtime.client import ContainerInfo

SECRET_ENV_VAR = "K3S_CLUSTER_SECRET"
LISTEN_PORT_FLAG = "--https-listen-port"


def find_secret_env(env: list[str]) -> str | None:
    """Return the full ``K3S_CLUSTER_SECRET=...`` entry (last one wins)."""
    found = None
    for entry in env:
        if entry.split("=", 1)[0] == SECRET_ENV_VAR:
            found = entry
    return found


def find_listen_port(cmd: list[str]) -> str | None:
    """Return the value of ``--https-listen-port`` in *cmd*, if present."""
    found = None
    for i, part in enumerate(cmd):
        if part == LISTEN_PORT_FLAG:
            if i + 1 < len(cmd):
                found = cmd[i + 1]
        elif part.startswith(f"{LISTEN_PORT_FLAG}="):
            found = part.split("=", 1)[1]
    return found or None


def derive_join_config(server: ContainerInfo) -> JoinConfig:
    """Derive the secret and server URL agents need to join *server*.

    Raises:
        NotFoundError: If the secret variable or the listen port flag is
            missing (a container not created by pyk3d, or an incompatible
            version).
    """
    secret_env = find_secret_env(server.env)
    if secret_env is None:
        raise NotFoundError(
            f"Couldn't get cluster secret from server container {server.name}"
        )

    port = find_listen_port(server.cmd)
    if port is None:
        raise NotFoundError(
            f"Couldn't get {LISTEN_PORT_FLAG} from server container {server.name}"
        )

    host = server.name.lstrip("/")
    return JoinConfig(secret_env=secret_env, server_url=f"https://{host}:{port}")


def highest_worker_suffix(worker_names: Iterable[str]) -> int:
    """Return the highest ordinal among *worker_names*, ``-1`` if none.

    Strict on purpose: a name without a numeric suffix could hide an
    ordinal, so it is an error rather than skipped.

    Raises:
        WorkerSuffixError: If a name has no trailing ``-<number>``.
    """
    highest = -1
    for name in worker_names:
        suffix = name.lstrip("/").rsplit("-", 1)[-1]
        if not suffix.isdigit():
            raise WorkerSuffixError(
                f"Failed to get highest worker suffix: [{name}] has no numeric suffix"
            )
        highest = max(highest, int(suffix))
    return highest


def next_worker_ordinals(worker_names: Iterable[str], count: int) -> list[int]:
    """Ordinals for *count* new workers, continuing after the highest one."""
    start = highest_worker_suffix(worker_names) + 1
    return list(range(start, start + count))
