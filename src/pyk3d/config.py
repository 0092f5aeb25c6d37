"""Config file loading and auto-discovery for pyk3d.

Searches for ``pyk3d.yaml`` in the current directory and parent
directories, parses it, and resolves relative paths against the config
file's location.  Command-line flags take precedence over config values,
which take precedence over built-in defaults.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from pathlib import Path

import yaml

CONFIG_FILENAME = "pyk3d.yaml"
DEFAULT_IMAGE = "rancher/k3s:latest"
DEFAULT_API_PORT = "6443"
SECRET_ALPHABET = string.ascii_letters + string.digits


@dataclass(frozen=True)
class Pyk3dConfig:
    """Parsed pyk3d project configuration."""

    config_path: Path | None = None
    image: str = DEFAULT_IMAGE
    api_port: str = DEFAULT_API_PORT
    cluster_dir: str | None = None
    wait: int | None = None
    docker_machine_fallback: bool = True
    node_workers: int = 1


def find_config(start: Path | None = None) -> Path | None:
    """Walk from *start* (default ``cwd()``) up to the filesystem root.

    Returns the first ``pyk3d.yaml`` found, or ``None``.
    """
    current = (start or Path.cwd()).resolve()
    while True:
        candidate = current / CONFIG_FILENAME
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            return None
        current = parent


def load_config(
    path: str | Path | None = None,
    *,
    auto_discover: bool = True,
) -> Pyk3dConfig:
    """Load a pyk3d config file.

    Resolution order:

    1. Explicit *path* (error if it doesn't exist).
    2. Auto-discover by walking parent directories.
    3. Return an empty ``Pyk3dConfig`` (all defaults).
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.is_file():
            msg = f"Config file not found: {config_path}"
            raise FileNotFoundError(msg)
    elif auto_discover:
        config_path = find_config()

    if config_path is None:
        return Pyk3dConfig()

    return _parse_config(config_path)


def _parse_config(config_path: Path) -> Pyk3dConfig:
    """Read and parse a YAML config file, resolving relative paths."""
    text = config_path.read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}

    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {config_path}, got {type(data).__name__}"
        raise ValueError(msg)

    cluster_dir = data.get("cluster_dir")
    if cluster_dir is not None:
        cluster_dir = str((config_path.parent / Path(cluster_dir).expanduser()).resolve())

    wait = data.get("wait")
    docker_machine_fallback = data.get("docker_machine_fallback", True)
    if not isinstance(docker_machine_fallback, bool):
        msg = (
            f"docker_machine_fallback must be true or false in {config_path}, "
            f"got {docker_machine_fallback!r}"
        )
        raise ValueError(msg)
    node_workers = int(data.get("node_workers", 1))
    if node_workers < 1:
        msg = f"node_workers must be >= 1 in {config_path}, got {node_workers}"
        raise ValueError(msg)

    return Pyk3dConfig(
        config_path=config_path,
        image=str(data.get("image", DEFAULT_IMAGE)),
        api_port=str(data.get("api_port", DEFAULT_API_PORT)),
        cluster_dir=cluster_dir,
        wait=int(wait) if wait is not None else None,
        docker_machine_fallback=docker_machine_fallback,
        node_workers=node_workers,
    )


def generate_cluster_secret(length: int = 20) -> str:
    """Generate a random alphanumeric cluster secret."""
    return "".join(secrets.choice(SECRET_ALPHABET) for _ in range(length))
