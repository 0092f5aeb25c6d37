#!/usr/bin/env python3
"""Demo: Cluster Lifecycle on a Local Docker Daemon.

Creates a cluster named ``demo`` with two workers, waits for the server,
adds a third worker, stops and restarts the cluster, and finally deletes
it.  Needs a running Docker daemon and pulls ``rancher/k3s`` on first use.

Run from the project root:
    python examples/demo_cluster.py
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from pyk3d import ClusterError, ClusterOrchestrator, CreateOptions, DockerRuntime

# ANSI colors
GREEN = "\033[92m"
RED = "\033[91m"
CYAN = "\033[96m"
BOLD = "\033[1m"
RESET = "\033[0m"


def _step(title: str) -> None:
    print(f"\n{BOLD}{CYAN}== {title} =={RESET}")


def _show(orchestrator: ClusterOrchestrator) -> None:
    for cluster in orchestrator.list_clusters():
        print(f"  {cluster.name:<10} {cluster.status:<8}")
        for node in cluster.nodes:
            print(f"    {node.name:<20} {node.role.value:<7} {node.status}")


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="  %(message)s")
    orchestrator = ClusterOrchestrator(DockerRuntime())

    try:
        _step("Create cluster 'demo' with 2 workers")
        orchestrator.create(CreateOptions(
            name="demo",
            workers=2,
            ports=["8080:80@workers"],
            port_auto_offset=1,
            wait=120,
        ))
        _show(orchestrator)

        _step("Add one more worker")
        orchestrator.add_node("demo", "worker", count=1)
        _show(orchestrator)

        _step("Stop and start")
        orchestrator.stop(name="demo")
        _show(orchestrator)
        orchestrator.start(name="demo")
        _show(orchestrator)
    except ClusterError as e:
        print(f"{RED}{BOLD}FAILED{RESET}  {e}")
    finally:
        _step("Delete cluster 'demo'")
        orchestrator.delete(name="demo")

    print(f"\n{GREEN}{BOLD}Done.{RESET}")


if __name__ == "__main__":
    main()
